"""Workout type definitions and per-type tracking parameters."""

from typing import Dict, List, Optional
from dataclasses import dataclass, field


@dataclass(frozen=True)
class WorkoutTypeDefinition:
    """Definition of a workout type."""

    name: str
    met: float
    max_speed_mps: float
    stride_length_m: Optional[float]
    description: str
    default_target: Dict[str, float] = field(default_factory=dict)

    @property
    def counts_steps(self) -> bool:
        """Whether distance can be turned into steps for this type."""
        return bool(self.stride_length_m)


# Jump filter ceiling for types without their own
DEFAULT_MAX_SPEED_MPS = 5.0
# Walking stride, used when a type has no stride of its own
DEFAULT_STRIDE_LENGTH_M = 0.6
# Walking MET, used for unknown types
DEFAULT_MET = 4.0


class WorkoutTypeCatalog:
    """Lookup of workout types by name."""

    _TYPES: Dict[str, WorkoutTypeDefinition] = {
        'Running': WorkoutTypeDefinition(
            name='Running',
            met=8.0,
            max_speed_mps=9.0,
            stride_length_m=0.75,
            description='Track your runs with GPS',
            default_target={'distance_km': 5, 'duration_min': 30},
        ),
        'Walking': WorkoutTypeDefinition(
            name='Walking',
            met=4.0,
            max_speed_mps=3.0,
            stride_length_m=0.6,
            description='Track your walks',
            default_target={'distance_km': 3, 'duration_min': 45},
        ),
        'Cycling': WorkoutTypeDefinition(
            name='Cycling',
            met=6.0,
            max_speed_mps=15.0,
            stride_length_m=None,
            description='Track your bike rides',
            default_target={'distance_km': 10, 'duration_min': 45},
        ),
        'HIIT': WorkoutTypeDefinition(
            name='HIIT',
            met=7.0,
            max_speed_mps=DEFAULT_MAX_SPEED_MPS,
            stride_length_m=0.65,
            description='High-intensity interval training',
            default_target={'duration_min': 20},
        ),
        'Swimming': WorkoutTypeDefinition(
            name='Swimming',
            met=6.0,
            max_speed_mps=DEFAULT_MAX_SPEED_MPS,
            stride_length_m=None,
            description='Track your swims',
            default_target={'distance_km': 1, 'duration_min': 30},
        ),
        'Strength': WorkoutTypeDefinition(
            name='Strength',
            met=5.0,
            max_speed_mps=DEFAULT_MAX_SPEED_MPS,
            stride_length_m=DEFAULT_STRIDE_LENGTH_M,
            description='Weight and resistance training',
            default_target={'duration_min': 45},
        ),
        'Yoga': WorkoutTypeDefinition(
            name='Yoga',
            met=3.0,
            max_speed_mps=DEFAULT_MAX_SPEED_MPS,
            stride_length_m=DEFAULT_STRIDE_LENGTH_M,
            description='Track your yoga sessions',
            default_target={'duration_min': 30},
        ),
    }

    @classmethod
    def get(cls, name: str) -> WorkoutTypeDefinition:
        """Get the definition for a workout type.

        Unknown names get a definition built from the defaults, so a
        misspelled type still tracks with walking-like parameters.

        Args:
            name: Workout type name, matched case-insensitively

        Returns:
            WorkoutTypeDefinition for the type
        """
        for type_name, definition in cls._TYPES.items():
            if type_name.lower() == (name or '').lower():
                return definition
        return WorkoutTypeDefinition(
            name=name,
            met=DEFAULT_MET,
            max_speed_mps=DEFAULT_MAX_SPEED_MPS,
            stride_length_m=DEFAULT_STRIDE_LENGTH_M,
            description='Custom workout',
        )

    @classmethod
    def is_valid(cls, name: str) -> bool:
        """Check if a workout type is known."""
        return any(type_name.lower() == (name or '').lower() for type_name in cls._TYPES)

    @classmethod
    def names(cls) -> List[str]:
        """Get all known workout type names."""
        return list(cls._TYPES.keys())

    @staticmethod
    def get_met(name: str) -> float:
        """Get the MET value used for calorie estimates."""
        return WorkoutTypeCatalog.get(name).met

    @staticmethod
    def get_max_speed(name: str) -> float:
        """Get the jump filter speed ceiling in m/s."""
        return WorkoutTypeCatalog.get(name).max_speed_mps
