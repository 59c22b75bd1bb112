from datetime import date

from flask_wtf import FlaskForm
from flask_wtf.file import FileField, FileRequired, FileAllowed
from wtforms import StringField, PasswordField, HiddenField, IntegerField, SelectField, SubmitField
from wtforms.validators import DataRequired, Email, Length, NumberRange, Optional


GENDER_CHOICES = [('male', 'Male'), ('female', 'Female'), ('other', 'Other')]
CRITERIA_TYPE_CHOICES = [('positive', 'Positive (adds points)'), ('negative', 'Negative (subtracts points)')]

CRITERIA_ICONS = ['📋', '✅', '🎯', '📖', '✍️', '🗣️', '🧠', '💪', '🏃', '🎨', '❌', '⚠️', '😴', '📵', '🚫']
REWARD_ICONS = ['🎁', '🏆', '🎪', '📚', '🎨', '⚽', '🎵', '🍫', '🎮', '✏️', '📱', '🎬', '🍕', '🧸', '🎯']


# -------------------- ACCOUNT FORMS --------------------

class LoginForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(), Email()])
    password = PasswordField('Password', validators=[DataRequired()])
    submit = SubmitField('Log in')


class RegisterForm(FlaskForm):
    full_name = StringField('Full name', validators=[DataRequired(), Length(max=120)])
    email = StringField('Email', validators=[DataRequired(), Email()])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=6)])
    submit = SubmitField('Register')


# -------------------- CLASSROOM FORMS --------------------

class ClassForm(FlaskForm):
    class_name = StringField('Class name', validators=[DataRequired(), Length(max=60)])
    teacher_name = StringField('Teacher name', validators=[Optional(), Length(max=120)])
    school_year = StringField('School year', validators=[Optional(), Length(max=20)])
    submit = SubmitField('Save class')

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if not self.school_year.data:
            self.school_year.data = str(date.today().year)


class StudentForm(FlaskForm):
    full_name = StringField('Full name', validators=[DataRequired(), Length(max=120)])
    gender = SelectField('Gender', choices=GENDER_CHOICES, validators=[DataRequired()])
    class_id = SelectField('Class', choices=[], validators=[DataRequired()])
    submit = SubmitField('Save student')


class StudentImportForm(FlaskForm):
    csv_file = FileField('CSV file (full_name, gender, class_name)', validators=[
        FileRequired(), FileAllowed(['csv'], 'CSV files only.')
    ])
    submit = SubmitField('Import')


class GroupForm(FlaskForm):
    group_name = StringField('Group name', validators=[DataRequired(), Length(max=60)])
    class_id = SelectField('Class', choices=[], validators=[DataRequired()])
    submit = SubmitField('Create group')


class GroupMemberForm(FlaskForm):
    student_id = SelectField('Student', choices=[], validators=[DataRequired()])
    submit = SubmitField('Add member')


class CriteriaForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=120)])
    base_points = IntegerField('Base points', default=10, validators=[DataRequired(), NumberRange(min=1)])
    type = SelectField('Type', choices=CRITERIA_TYPE_CHOICES, default='positive', validators=[DataRequired()])
    icon = SelectField('Icon', choices=[(i, i) for i in CRITERIA_ICONS], default='📋')
    class_id = SelectField('Class', choices=[], validators=[DataRequired()])
    submit = SubmitField('Save criteria')


class PointEntryForm(FlaskForm):
    student_id = HiddenField('Student', validators=[DataRequired(message='Select a student and a criteria.')])
    criteria_id = HiddenField('Criteria', validators=[DataRequired(message='Select a student and a criteria.')])
    note = StringField('Note', validators=[Optional(), Length(max=255)])
    submit = SubmitField('Confirm')


# -------------------- REWARD FORMS --------------------

class RewardForm(FlaskForm):
    name = StringField('Reward name', validators=[DataRequired(), Length(max=120)])
    required_points = IntegerField('Required points', validators=[DataRequired(), NumberRange(min=1)])
    icon = SelectField('Icon', choices=[(i, i) for i in REWARD_ICONS], default='🎁')
    stock = IntegerField('Stock (-1 = unlimited)', default=-1, validators=[Optional(), NumberRange(min=-1)])
    class_id = SelectField('Class', choices=[], validators=[DataRequired()])
    submit = SubmitField('Save reward')


class ExchangeForm(FlaskForm):
    student_id = SelectField('Student', choices=[], validators=[DataRequired()])
    submit = SubmitField('Exchange')


class StudentExchangeForm(FlaskForm):
    reward_id = HiddenField(validators=[DataRequired()])
    submit = SubmitField('Exchange')


# -------------------- APPROVAL & TOOLS --------------------

class ApprovalForm(FlaskForm):
    class_id = SelectField('Add to class on approval', choices=[], validators=[
        DataRequired(message='Choose a class before approving.')
    ])
    submit = SubmitField('Approve')


class RandomPickerForm(FlaskForm):
    class_id = SelectField('Class', choices=[], validators=[DataRequired()])
    count = IntegerField('How many', default=1, validators=[DataRequired(), NumberRange(min=1, max=50)])
    submit = SubmitField('Pick')


class ActionForm(FlaskForm):
    """Empty form used for CSRF-protected buttons (delete, reject, mark read)."""
    submit = SubmitField('Submit')
