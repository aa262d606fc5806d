class PensionError(Exception):
    pass


class ValidationError(PensionError):
    pass


class InvalidContributionError(ValidationError):
    pass


class DuplicatePeriodicContributionError(ValidationError):
    def __init__(self, member_id: str, year: int, month: int):
        self.member_id = member_id
        self.year = year
        self.month = month
        super().__init__(
            f"Monthly contribution already exists for member {member_id} in {month:02d}/{year}"
        )


class InvalidPaginationError(ValidationError):
    pass


class NotFoundError(PensionError):
    pass


class NoContributionsFoundError(NotFoundError):
    def __init__(self, member_id: str):
        self.member_id = member_id
        super().__init__(f"No contributions found for member {member_id}")


class TransactionHistoryNotFoundError(NotFoundError):
    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"No transaction history found for {entity_id}")


class TaskNotFoundError(NotFoundError):
    pass


class PersistenceError(PensionError):
    pass


class UniqueConstraintError(PersistenceError):
    def __init__(self, repository: str, key):
        self.repository = repository
        self.key = key
        super().__init__(f"Unique constraint violated on {repository}: {key!r}")


class RecordNotFoundError(PersistenceError):
    pass


class SchedulerError(PensionError):
    pass


class TaskAlreadyRunningError(SchedulerError):
    pass


class StaleRecordError(PersistenceError):
    def __init__(self, repository: str, record_id):
        self.repository = repository
        self.record_id = record_id
        super().__init__(f"{repository} record {record_id} changed since it was read")


class BatchInProgressError(SchedulerError):
    pass
