"""
Result types shared by the gateway adapters
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

SAVED_VERIFIED = 'saved_verified'
SAVED_UNVERIFIED = 'saved_unverified'
FAILED = 'failed'


@dataclass
class WriteResult:
    """Outcome of a persisted write: transport success and readback verification are separate"""
    status: str
    message: str = ''
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status != FAILED

    @property
    def verified(self) -> bool:
        return self.status == SAVED_VERIFIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'success': self.success,
            'verified': self.verified,
            'message': self.message,
            'details': self.details,
        }


@dataclass
class SlotResult:
    endpoint: str
    success: bool
    status: int = 0
    response: Any = None
    error: str = ''


@dataclass
class FlashUploadResult:
    """Per-slot outcome of a dual-slot (nv1/nv2) flash upload"""
    name: str
    slots: List[SlotResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.slots) and all(slot.success for slot in self.slots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'success': self.success,
            'slots': [slot.__dict__ for slot in self.slots],
        }
