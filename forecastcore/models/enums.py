import enum


class ValueKind(str, enum.Enum):
    dollar = "dollar"
    percentage = "percentage"


class TargetDirection(str, enum.Enum):
    above = "above"
    below = "below"


class RuleType(str, enum.Enum):
    ratio = "ratio"
    subtract = "subtract"
    complex = "complex"


class ValueSource(str, enum.Enum):
    locked = "locked"
    stored = "stored"
    baseline = "baseline"
    driver = "driver"
    calculated = "calculated"
    scaled = "scaled"
    flow_up = "flow_up"
