"""
Exception types raised by the processing service.

Policy rejections ("blocked_by_policy", "not_target_language") are ordinary
results and never appear here.
"""


class LangLogError(Exception):
    """Base class for all processing-service errors."""


class PreconditionError(LangLogError):
    """The account is not set up well enough for the operation to make sense."""


class UserNotFoundError(PreconditionError):
    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class TargetLanguageNotConfiguredError(PreconditionError):
    def __init__(self, user_id):
        super().__init__(f"User {user_id} has no current target language")
        self.user_id = user_id


class ContentLabelNotFoundError(LangLogError):
    def __init__(self, ref):
        super().__init__(f"Content label {ref} not found")
        self.ref = ref


class InvalidStageTransitionError(LangLogError):
    def __init__(self, content_key: str, current, requested):
        super().__init__(f"Illegal label transition for {content_key}: {current.value} -> {requested.value}")
        self.content_key = content_key
        self.current = current
        self.requested = requested


class UnsupportedContentSourceError(LangLogError):
    def __init__(self, source):
        super().__init__(f"No label processor registered for source [{source}]")
        self.source = source


class LanguageActivityNotFoundError(LangLogError):
    def __init__(self, activity_id):
        super().__init__(f"Language activity {activity_id} not found")
        self.activity_id = activity_id
