"""
Record types for Classroom Ranks.

The backend owns every table; these dataclasses only mirror the rows it
returns so that templates and helpers can use attribute access. Timestamps
are kept as the ISO-8601 strings the backend sends (stored as UTC) and are
parsed at display time.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional


def _known_fields(cls, row: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the keys that map to dataclass fields."""
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in row.items() if key in names}


def _nested(cls, value):
    return cls.from_row(value) if isinstance(value, dict) else None


# -------------------- ACCOUNTS --------------------

@dataclass
class Profile:
    """Backend account profile; ``role`` drives which area a user sees."""
    id: str = ""
    full_name: str = ""
    phone: Optional[str] = None
    role: str = "student"
    status: str = "pending"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(**_known_fields(cls, row))

    @property
    def is_teacher(self):
        return self.role == "teacher"

    @property
    def is_approved(self):
        return self.status == "approved"

    def get_display_name(self):
        return self.full_name or "Unnamed"


@dataclass
class PendingStudent:
    """Row returned by the ``get_pending_students`` procedure."""
    id: str = ""
    full_name: Optional[str] = None
    email: Optional[str] = None
    status: str = "pending"
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(**_known_fields(cls, row))

    @property
    def is_pending(self):
        return self.status == "pending"

    @property
    def initial(self):
        return (self.full_name or "?")[0].upper()


# -------------------- CLASSROOM --------------------

@dataclass
class SchoolClass:
    id: str = ""
    class_name: str = ""
    teacher_name: Optional[str] = None
    school_year: Optional[str] = None
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(**_known_fields(cls, row))


@dataclass
class Student:
    id: str = ""
    class_id: Optional[str] = None
    user_id: Optional[str] = None
    full_name: str = ""
    gender: str = "male"
    total_points: int = 0
    current_rank: Optional[str] = None
    current_multiplier: float = 1.0
    avatar_url: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None
    class_: Optional[SchoolClass] = None

    @classmethod
    def from_row(cls, row):
        data = _known_fields(cls, row)
        data["class_"] = _nested(SchoolClass, row.get("class"))
        data["total_points"] = data.get("total_points") or 0
        return cls(**data)


@dataclass
class GroupMember:
    id: str = ""
    group_id: str = ""
    student_id: str = ""
    joined_at: Optional[str] = None
    student: Optional[Student] = None

    @classmethod
    def from_row(cls, row):
        data = _known_fields(cls, row)
        data["student"] = _nested(Student, row.get("student"))
        return cls(**data)


@dataclass
class Group:
    id: str = ""
    class_id: Optional[str] = None
    group_name: str = ""
    total_points: int = 0
    member_count: int = 0
    is_active: bool = True
    created_at: Optional[str] = None
    members: List[GroupMember] = field(default_factory=list)

    @classmethod
    def from_row(cls, row):
        data = _known_fields(cls, row)
        data["members"] = [GroupMember.from_row(m) for m in row.get("members") or []]
        data["total_points"] = data.get("total_points") or 0
        data["member_count"] = data.get("member_count") or 0
        return cls(**data)


@dataclass
class Criteria:
    """A point-scoring rule; ``type`` is ``positive`` or ``negative``."""
    id: str = ""
    class_id: Optional[str] = None
    name: str = ""
    base_points: int = 0
    type: str = "positive"
    icon: str = "📋"
    is_active: bool = True
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(**_known_fields(cls, row))

    @property
    def is_negative(self):
        return self.type == "negative"


@dataclass
class Rank:
    id: Optional[str] = None
    rank_name: str = ""
    min_points: int = 0
    multiplier: float = 1.0
    icon: str = ""
    color: str = ""
    description: str = ""
    sort_order: int = 0

    @classmethod
    def from_row(cls, row):
        return cls(**_known_fields(cls, row))


@dataclass
class PointHistory:
    id: str = ""
    student_id: str = ""
    criteria_id: Optional[str] = None
    base_points: int = 0
    multiplier: float = 1.0
    final_points: int = 0
    note: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    student: Optional[Student] = None
    criteria: Optional[Criteria] = None

    @classmethod
    def from_row(cls, row):
        data = _known_fields(cls, row)
        data["student"] = _nested(Student, row.get("student"))
        data["criteria"] = _nested(Criteria, row.get("criteria"))
        data["final_points"] = data.get("final_points") or 0
        return cls(**data)


# -------------------- REWARDS --------------------

# stock of -1 never runs out; 0 is sold out
UNLIMITED_STOCK = -1


@dataclass
class Reward:
    id: str = ""
    class_id: Optional[str] = None
    name: str = ""
    required_points: int = 0
    icon: str = "🎁"
    stock: int = UNLIMITED_STOCK
    is_active: bool = True
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        data = _known_fields(cls, row)
        if data.get("stock") is None:
            data["stock"] = UNLIMITED_STOCK
        return cls(**data)

    @property
    def is_unlimited(self):
        return self.stock == UNLIMITED_STOCK

    @property
    def is_sold_out(self):
        return self.stock == 0


@dataclass
class RewardHistory:
    id: str = ""
    student_id: str = ""
    reward_id: Optional[str] = None
    points_spent: int = 0
    status: Optional[str] = None
    note: Optional[str] = None
    exchanged_at: Optional[str] = None
    student: Optional[Student] = None
    reward: Optional[Reward] = None

    @classmethod
    def from_row(cls, row):
        data = _known_fields(cls, row)
        data["student"] = _nested(Student, row.get("student"))
        data["reward"] = _nested(Reward, row.get("reward"))
        return cls(**data)


@dataclass
class Notification:
    id: str = ""
    user_id: str = ""
    title: str = ""
    message: str = ""
    type: Optional[str] = None
    is_read: bool = False
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(**_known_fields(cls, row))

    def to_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}
