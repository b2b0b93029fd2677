class CaseOpeningError(Exception):
    code = "case_opening_failed"

    def __init__(self, message: str = "", **detail) -> None:
        super().__init__(message or self.code)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self), **self.detail}


class NotFound(CaseOpeningError):
    code = "case_not_found"


class EmptyCase(CaseOpeningError):
    code = "empty_case"


class NoEligibleRewards(CaseOpeningError):
    code = "no_eligible_rewards"


class InsufficientFunds(CaseOpeningError):
    code = "insufficient_funds"

    def __init__(self, required: int, current: int) -> None:
        super().__init__(f"case costs {required}, balance is {current}", required=int(required), current=int(current))
        self.required = int(required)
        self.current = int(current)


class NetworkFailure(CaseOpeningError):
    code = "network_failure"


class SettlementConflict(CaseOpeningError):
    code = "settlement_conflict"


class SynchronizationMismatch(CaseOpeningError):
    code = "synchronization_mismatch"

    def __init__(self, displayed_id: str, awarded_id: str) -> None:
        super().__init__(
            f"roulette shows {displayed_id} but server awarded {awarded_id}",
            displayed_id=str(displayed_id),
            awarded_id=str(awarded_id),
        )
        self.displayed_id = str(displayed_id)
        self.awarded_id = str(awarded_id)


class OperationInProgress(CaseOpeningError):
    code = "operation_in_progress"


class InvalidPhase(CaseOpeningError):
    code = "invalid_phase"


class MalformedResponse(CaseOpeningError):
    """A procedure answered, but its payload could not be used."""

    code = "malformed_response"


class RemoteError(CaseOpeningError):
    """Procedure refused the call with a code that has no dedicated class."""

    def __init__(self, code: str, **detail) -> None:
        super().__init__(code, **detail)
        self.code = str(code or "remote_error")


_BY_CODE = {
    cls.code: cls
    for cls in (NotFound, EmptyCase, NoEligibleRewards, NetworkFailure, SettlementConflict, OperationInProgress, InvalidPhase)
}


def from_payload(payload: dict) -> CaseOpeningError:
    code = str(payload.get("error") or "remote_error")
    if code == InsufficientFunds.code:
        return InsufficientFunds(int(payload.get("required", 0) or 0), int(payload.get("current", 0) or 0))
    detail = {k: v for k, v in payload.items() if k not in {"success", "error"}}
    cls = _BY_CODE.get(code)
    if cls is None:
        return RemoteError(code, **detail)
    return cls(code, **detail)
