"""
Domain errors

Every error the services raise derives from BloodBankError and carries the
HTTP status the API answers with. None of them is fatal: the caller decides
whether to retry, reject or give up.
"""


class BloodBankError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__


class InsufficientStock(BloodBankError):
    status_code = 409

    def __init__(self, facility_id: str, blood_group: str, requested: int, available: int):
        super().__init__(
            f"Not enough {blood_group} units at facility {facility_id}: "
            f"requested {requested}, available {available}"
        )
        self.facility_id = facility_id
        self.blood_group = blood_group
        self.requested = requested
        self.available = available


class InvalidTransition(BloodBankError):
    status_code = 409

    def __init__(self, record: str, current: str, target: str):
        super().__init__(f"Cannot move {record} from '{current}' to '{target}'")
        self.current = current
        self.target = target


class UnknownActor(BloodBankError):
    status_code = 404


class RecordNotFound(BloodBankError):
    status_code = 404


class InvalidRequest(BloodBankError):
    status_code = 400


class NotEligible(BloodBankError):
    status_code = 409
