import math
from enum import Enum

# Day grid, in minutes since midnight
START_MIN = 7 * 60   # 07:00
END_MIN = 24 * 60    # 24:00
DAY_MIN = END_MIN - START_MIN

SNAP = 10
DEFAULT_DURATION = 60
MIN_DURATION = 15
# Boundaries land on this grid: snapping gives multiples of SNAP, and the
# minimum-duration clamps shift them by MIN_DURATION
GRID_MIN = math.gcd(SNAP, MIN_DURATION)

# Rendering scale of the scheduling surface
PX_PER_MIN = 2
TAP_THRESHOLD_PX = 6

NOTE_MAX_LENGTH = 500


class Room(str, Enum):
    WHITE = "White"
    GREY = "Grey"
    BLACK = "Black"


class Teacher(str, Enum):
    SASHA = "Sasha"
    YANA = "Yana"
    GRISHA = "Grisha"
    SONYA = "Sonya"
    VIKA = "Vika"
    DASHA = "Dasha"
    NIKA = "Nika"
    BOGDAN = "Bogdan"


class LessonType(str, Enum):
    GROUP = "Group"
    PRIVATE = "Private"
    TEACHER = "Teacher"
