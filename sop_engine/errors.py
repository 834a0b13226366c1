"""Exception hierarchy for the SOP rule engine."""


class SOPEngineError(Exception):
    """Base error for the rule engine."""

    pass


class MalformedCandidateError(SOPEngineError):
    """Extraction candidate is not structured data or lacks a required field."""

    def __init__(self, message: str, index: int = None):
        self.index = index
        super().__init__(message)


class ConflictNotFoundError(SOPEngineError):
    """Resolution references a conflict id that is not attached to any rule."""

    def __init__(self, conflict_id: str):
        self.conflict_id = conflict_id
        super().__init__(f"Conflict {conflict_id} not found")


class InvalidActionError(SOPEngineError):
    """Resolution action outside the closed action set."""

    pass


class DuplicateRuleIdError(SOPEngineError):
    """A rule with this id already exists in the collection."""

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} already exists")


class RuleNotFoundError(SOPEngineError):

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} not found")


class SOPNotFoundError(SOPEngineError):

    def __init__(self, sop_id: str):
        self.sop_id = sop_id
        super().__init__(f"SOP {sop_id} not found")


class TagNotFoundError(SOPEngineError):

    def __init__(self, tag_id: str):
        self.tag_id = tag_id
        super().__init__(f"Tag {tag_id} not found")


class InvalidTransitionError(SOPEngineError):
    """Tag status change that the review workflow does not allow."""

    pass


class ExtractionError(SOPEngineError):
    """Document text could not be extracted or segmented."""

    pass
