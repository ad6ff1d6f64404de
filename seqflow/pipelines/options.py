from typing import Any

from seqflow import ValidationError


def require_inputs(step: str, enabled: bool, **companions: Any) -> None:
    """
    Check that an enabled optional step was given its companion inputs.

    .. code-block:: python

        require_inputs(
            "cleanse_xenograft", cleanse_xenograft, xenocp_reference_tar=xenocp_reference_tar
        )
    """
    if not enabled:
        return
    missing = sorted(name for name, value in companions.items() if value in (None, ""))
    if missing:
        raise ValidationError(f"Step '{step}' requires input(s): {', '.join(missing)}")
