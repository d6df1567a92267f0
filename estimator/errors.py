# estimator/errors.py
"""Typed failures surfaced by the estimate engine.

Each class maps to one user-visible behaviour: validation and authorization
errors block the action with a specific message, state conflicts tell the
caller to re-fetch.  Safe-default situations (division by zero, missing rate
lookups) are not errors and never raise.
"""


class EstimatorError(Exception):
    status_code = 400
    kind = 'error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': self.kind, 'message': self.message}


class ValidationError(EstimatorError):
    status_code = 400
    kind = 'validation'


class AuthorizationError(EstimatorError):
    status_code = 403
    kind = 'authorization'


class StateConflictError(EstimatorError):
    status_code = 409
    kind = 'state_conflict'
