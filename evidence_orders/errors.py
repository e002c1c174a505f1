from functools import wraps
from sqlalchemy.exc import SQLAlchemyError
from evidence_orders.extensions import db
import logging

logger = logging.getLogger(__name__)


class OrderWorkflowError(Exception):
    kind = 'error'

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(OrderWorkflowError):
    kind = 'validation'


class StateConflictError(OrderWorkflowError):
    kind = 'conflict'


class NotFoundError(OrderWorkflowError):
    kind = 'not_found'


class AuditLogImmutableError(Exception):
    pass


class Result:
    """Outcome of a public engine operation.

    Business-rule violations never raise out of an operation; callers get
    ``ok=False`` with the message to show verbatim and the error kind.
    """

    __slots__ = ('ok', 'data', 'error', 'error_kind')

    def __init__(self, ok, data=None, error=None, error_kind=None):
        self.ok = ok
        self.data = data
        self.error = error
        self.error_kind = error_kind

    @classmethod
    def success(cls, data=None):
        return cls(True, data=data)

    @classmethod
    def failure(cls, message, kind='error'):
        return cls(False, error=message, error_kind=kind)

    def __bool__(self):
        return self.ok

    def __repr__(self):
        if self.ok:
            return f'<Result ok data={self.data!r}>'
        return f'<Result error={self.error!r} kind={self.error_kind}>'


def service_operation(func):
    """Turn workflow errors raised by ``func`` into a failed ``Result``.

    The session is rolled back before returning, so a failed operation
    leaves no partial mutation behind. Infrastructure errors are logged and
    re-raised.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            data = func(*args, **kwargs)
        except OrderWorkflowError as e:
            db.session.rollback()
            logger.info(
                "Operation %s rejected kind=%s: %s",
                func.__name__,
                e.kind,
                e.message,
            )
            return Result.failure(e.message, e.kind)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Persistence failure in %s", func.__name__)
            raise
        return Result.success(data)
    return wrapper
