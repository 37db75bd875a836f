"""
Validation utilities for signaling payloads.
Each validator returns an error string, or None when the value is acceptable.
"""

from typing import Dict, Any, List, Optional


class ValidationUtils:
    """Common validation utilities."""

    @staticmethod
    def validate_required_fields(data: Any, required_fields: List[str]) -> Optional[str]:
        """Validate that all required fields are present in the data."""
        if not isinstance(data, dict):
            return f"Expected an object, got {type(data).__name__}"
        missing_fields = [field for field in required_fields if field not in data or data[field] is None]
        if missing_fields:
            return f"Missing required fields: {', '.join(missing_fields)}"
        return None

    @staticmethod
    def validate_description(description: Any, expected_type: str) -> Optional[str]:
        """Validate a session description of the form {type, sdp}."""
        error = ValidationUtils.validate_required_fields(description, ['type', 'sdp'])
        if error:
            return error
        if description['type'] != expected_type:
            return f"Expected {expected_type} description, got {description['type']}"
        if not isinstance(description['sdp'], str) or not description['sdp']:
            return "Empty SDP"
        return None

    @staticmethod
    def validate_candidate(candidate: Any) -> Optional[str]:
        """Validate an ICE candidate of the form {candidate, sdpMid, sdpMLineIndex}."""
        error = ValidationUtils.validate_required_fields(candidate, ['candidate'])
        if error:
            return error
        if not isinstance(candidate['candidate'], str) or not candidate['candidate'].strip():
            return "Empty candidate"
        if candidate.get('sdpMid') is None and candidate.get('sdpMLineIndex') is None:
            return "Candidate needs sdpMid or sdpMLineIndex"
        return None

    @staticmethod
    def validate_track_labels(labels: Any, known_kinds: List[str]) -> Dict[str, str]:
        """Keep only {mid: kind} entries that name a known track kind."""
        if not isinstance(labels, dict):
            return {}
        return {
            str(mid): kind for mid, kind in labels.items()
            if isinstance(kind, str) and kind in known_kinds
        }
