class IntelliFormError(Exception):
    """Base error; status_code is the HTTP status the API answers with"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(IntelliFormError):
    """An answer failed the required check or one of the field's rules.

    The message is the rule's own message, shown to the respondent as is.
    """
    status_code = 422

    def __init__(self, message: str, field_id: str = None):
        super().__init__(message)
        self.field_id = field_id


class ResolutionPreconditionError(ValidationError):
    """Marking a problem resolved without a comment"""
    status_code = 400


class NotFoundError(IntelliFormError):
    status_code = 404


class AIUnavailableError(IntelliFormError):
    """The AI capability could not be reached or kept failing"""
    status_code = 503


class MalformedAIOutputError(IntelliFormError):
    """The AI capability answered, but not in the expected structure"""
    status_code = 502


class AlreadySubmittedError(IntelliFormError):
    status_code = 409


class SequencerStateError(IntelliFormError):
    """An operation that the conversation's current state does not allow"""
    status_code = 409


class StorageError(IntelliFormError):
    status_code = 500
