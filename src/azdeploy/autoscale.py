"""Autoscale policy synthesis for hosted service roles.

Builds one opinionated scale-out/scale-in policy for a (service, role)
pair, submits it, then reads it back and compares it with what was sent.

Per invocation the policy moves through Built -> Submitted -> Verified.
Verification is diagnostic: a failed read-back or a difference is logged
and reported in the result, never raised from apply().

The resource id the policy is stored under and the metric source of every
rule are derived from the same (service, role, slot) values. A mismatch
would produce a policy that silently never triggers.

Default policy (AutoscalePolicyConfig):
- capacity 1..10, default 1
- weekly recurrence Monday/Thursday/Friday at 07:00 and 19:00, Eastern Standard Time
- CPU >= 80% (5 min grain, 30 min window, average) -> +1 instance, 20 min cooldown
- CPU <= 60% (same sampling) -> -1 instance, 20 min cooldown
"""

import json
import logging
import re
from dataclasses import dataclass, field, fields
from datetime import timedelta
from enum import StrEnum
from typing import Any

from azure.core.exceptions import AzureError, ResourceNotFoundError

from azdeploy.errors import AutoscaleVerificationError, NotFoundError, ProvisioningError
from azdeploy.transport import ServiceManagementClient

logger = logging.getLogger(__name__)

SETTINGS_PATH = "/services/monitoring/autoscalesettings"


class ComparisonOperator(StrEnum):
    EQUALS = "Equals"
    NOT_EQUALS = "NotEquals"
    GREATER_THAN = "GreaterThan"
    GREATER_THAN_OR_EQUAL = "GreaterThanOrEqual"
    LESS_THAN = "LessThan"
    LESS_THAN_OR_EQUAL = "LessThanOrEqual"


class MetricStatistic(StrEnum):
    AVERAGE = "Average"
    MIN = "Min"
    MAX = "Max"
    SUM = "Sum"


class TimeAggregation(StrEnum):
    AVERAGE = "Average"
    MINIMUM = "Minimum"
    MAXIMUM = "Maximum"
    LAST = "Last"
    TOTAL = "Total"
    COUNT = "Count"


class ScaleDirection(StrEnum):
    NONE = "None"
    INCREASE = "Increase"
    DECREASE = "Decrease"


class ScaleType(StrEnum):
    CHANGE_COUNT = "ChangeCount"
    PERCENT_CHANGE_COUNT = "PercentChangeCount"


class RecurrenceFrequency(StrEnum):
    NONE = "None"
    SECOND = "Second"
    MINUTE = "Minute"
    HOUR = "Hour"
    DAY = "Day"
    WEEK = "Week"
    MONTH = "Month"
    YEAR = "Year"


class AutoscaleState(StrEnum):
    BUILT = "Built"
    SUBMITTED = "Submitted"
    VERIFIED = "Verified"


# ISO-8601 durations as used on the wire, e.g. PT5M, PT1H30M, P1DT2H
_DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def format_duration(value: timedelta) -> str:
    total = int(value.total_seconds())
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)

    result = "P"
    if days:
        result += f"{days}D"
    if hours or minutes or seconds or not days:
        result += "T"
        if hours:
            result += f"{hours}H"
        if minutes:
            result += f"{minutes}M"
        if seconds or not (days or hours or minutes):
            result += f"{seconds}S"
    return result


def parse_duration(value: str) -> timedelta:
    """Parse an ISO-8601 day-time duration.

    Raises:
        ValueError: If the value is not a supported duration
    """
    match = _DURATION_PATTERN.match(value or "")
    if not match or value in ("P", "PT"):
        raise ValueError(f"Invalid duration: {value!r}")
    parts = {name: float(amount) for name, amount in match.groupdict().items() if amount}
    return timedelta(**parts)


def build_cloud_service_resource_id(
    service_name: str, role_name: str, is_production: bool = True
) -> str:
    """Resource id an autoscale setting for a cloud service role is stored under."""
    slot = "production" if is_production else "staging"
    return f"/hostedservices/{service_name}/deploymentslots/{slot}/roles/{role_name}"


def build_cloud_service_metric_source(
    service_name: str, role_name: str, is_production: bool = True
) -> str:
    """Metric source identifying a cloud service role's metrics."""
    return build_cloud_service_resource_id(service_name, role_name, is_production)


def _parse_bool(value: Any) -> bool:
    # Read-backs may carry booleans as strings
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


@dataclass
class ScaleCapacity:
    """Instance count bounds (strings on the wire)."""

    minimum: str
    maximum: str
    default: str

    def to_dict(self) -> dict[str, Any]:
        return {"Minimum": self.minimum, "Maximum": self.maximum, "Default": self.default}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScaleCapacity":
        return cls(
            minimum=str(data["Minimum"]),
            maximum=str(data["Maximum"]),
            default=str(data["Default"]),
        )


@dataclass
class RecurrentSchedule:
    days: list[str]
    hours: list[int]
    minutes: list[int]
    time_zone: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "TimeZone": self.time_zone,
            "Days": list(self.days),
            "Hours": list(self.hours),
            "Minutes": list(self.minutes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecurrentSchedule":
        return cls(
            days=list(data.get("Days") or []),
            hours=[int(h) for h in data.get("Hours") or []],
            minutes=[int(m) for m in data.get("Minutes") or []],
            time_zone=data.get("TimeZone", ""),
        )


@dataclass
class Recurrence:
    frequency: RecurrenceFrequency
    schedule: RecurrentSchedule

    def to_dict(self) -> dict[str, Any]:
        return {"Frequency": str(self.frequency), "Schedule": self.schedule.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recurrence":
        return cls(
            frequency=RecurrenceFrequency(data["Frequency"]),
            schedule=RecurrentSchedule.from_dict(data.get("Schedule") or {}),
        )


@dataclass
class MetricTrigger:
    """Condition evaluated over a sampled, aggregated metric."""

    metric_name: str
    metric_namespace: str
    metric_source: str
    operator: ComparisonOperator
    threshold: float
    statistic: MetricStatistic
    time_grain: timedelta
    time_aggregation: TimeAggregation
    time_window: timedelta

    def to_dict(self) -> dict[str, Any]:
        return {
            "MetricName": self.metric_name,
            "MetricNamespace": self.metric_namespace,
            "MetricSource": self.metric_source,
            "TimeGrain": format_duration(self.time_grain),
            "Statistic": str(self.statistic),
            "TimeWindow": format_duration(self.time_window),
            "TimeAggregation": str(self.time_aggregation),
            "Operator": str(self.operator),
            "Threshold": float(self.threshold),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricTrigger":
        return cls(
            metric_name=data["MetricName"],
            metric_namespace=data.get("MetricNamespace") or "",
            metric_source=data["MetricSource"],
            operator=ComparisonOperator(data["Operator"]),
            threshold=float(data["Threshold"]),
            statistic=MetricStatistic(data["Statistic"]),
            time_grain=parse_duration(data["TimeGrain"]),
            time_aggregation=TimeAggregation(data["TimeAggregation"]),
            time_window=parse_duration(data["TimeWindow"]),
        )


@dataclass
class ScaleAction:
    direction: ScaleDirection
    type: ScaleType
    value: str
    cooldown: timedelta

    def to_dict(self) -> dict[str, Any]:
        return {
            "Direction": str(self.direction),
            "Type": str(self.type),
            "Value": self.value,
            "Cooldown": format_duration(self.cooldown),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScaleAction":
        return cls(
            direction=ScaleDirection(data["Direction"]),
            type=ScaleType(data["Type"]),
            value=str(data["Value"]),
            cooldown=parse_duration(data["Cooldown"]),
        )


@dataclass
class ScaleRule:
    metric_trigger: MetricTrigger
    scale_action: ScaleAction

    def to_dict(self) -> dict[str, Any]:
        return {
            "MetricTrigger": self.metric_trigger.to_dict(),
            "ScaleAction": self.scale_action.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScaleRule":
        return cls(
            metric_trigger=MetricTrigger.from_dict(data["MetricTrigger"]),
            scale_action=ScaleAction.from_dict(data["ScaleAction"]),
        )


@dataclass
class AutoscaleProfile:
    name: str
    capacity: ScaleCapacity
    rules: list[ScaleRule]
    recurrence: Recurrence | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "Name": self.name,
            "Capacity": self.capacity.to_dict(),
            "Rules": [rule.to_dict() for rule in self.rules],
        }
        if self.recurrence is not None:
            result["Recurrence"] = self.recurrence.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AutoscaleProfile":
        recurrence = data.get("Recurrence")
        return cls(
            name=data["Name"],
            capacity=ScaleCapacity.from_dict(data["Capacity"]),
            rules=[ScaleRule.from_dict(rule) for rule in data.get("Rules") or []],
            recurrence=Recurrence.from_dict(recurrence) if recurrence else None,
        )


@dataclass
class AutoscaleSetting:
    profiles: list[AutoscaleProfile]
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "Profiles": [profile.to_dict() for profile in self.profiles],
            "Enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AutoscaleSetting":
        # GET responses may wrap the setting
        if "Setting" in data:
            data = data["Setting"]
        return cls(
            profiles=[AutoscaleProfile.from_dict(p) for p in data.get("Profiles") or []],
            enabled=_parse_bool(data.get("Enabled", True)),
        )


@dataclass
class AutoscalePolicyConfig:
    """Tunable autoscale policy. Defaults reproduce the historical policy."""

    profile_name: str = "sampleProfile"
    enabled: bool = True
    minimum_instances: int = 1
    maximum_instances: int = 10
    default_instances: int = 1
    recurrence_frequency: str = "Week"
    recurrence_days: list[str] = field(
        default_factory=lambda: ["Monday", "Thursday", "Friday"]
    )
    recurrence_hours: list[int] = field(default_factory=lambda: [7, 19])
    recurrence_minutes: list[int] = field(default_factory=lambda: [0])
    time_zone: str = "Eastern Standard Time"
    metric_name: str = "PercentageCPU"
    metric_namespace: str = ""
    scale_out_threshold: float = 80
    scale_in_threshold: float = 60
    scale_out_step: int = 1
    scale_in_step: int = 1
    cooldown_minutes: int = 20
    time_grain_minutes: int = 5
    time_window_minutes: int = 30
    statistic: str = "Average"
    time_aggregation: str = "Average"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check internal consistency.

        Raises:
            ValueError: If bounds, thresholds or durations are inconsistent
        """
        if not (0 <= self.minimum_instances <= self.default_instances <= self.maximum_instances):
            raise ValueError(
                "Capacity must satisfy 0 <= minimum <= default <= maximum "
                f"(got {self.minimum_instances}/{self.default_instances}/"
                f"{self.maximum_instances})"
            )
        if self.scale_in_threshold >= self.scale_out_threshold:
            raise ValueError(
                f"Scale-in threshold ({self.scale_in_threshold}) must be below "
                f"scale-out threshold ({self.scale_out_threshold})"
            )
        for name in ("cooldown_minutes", "time_grain_minutes", "time_window_minutes"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.time_window_minutes < self.time_grain_minutes:
            raise ValueError("time_window_minutes must be at least time_grain_minutes")
        if self.scale_out_step <= 0 or self.scale_in_step <= 0:
            raise ValueError("Scale steps must be positive")
        RecurrenceFrequency(self.recurrence_frequency)
        MetricStatistic(self.statistic)
        TimeAggregation(self.time_aggregation)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AutoscalePolicyConfig":
        """Create config from a mapping, ignoring unknown keys.

        Raises:
            ValueError: If the resulting policy is inconsistent
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown autoscale settings: {', '.join(sorted(unknown))}")
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class AutoscaleResult:
    """Outcome of one apply() invocation."""

    status_code: str
    resource_id: str
    setting: AutoscaleSetting
    state: AutoscaleState
    differences: list[str] = field(default_factory=list)


def diff_settings(submitted: AutoscaleSetting, persisted: AutoscaleSetting) -> list[str]:
    """Return paths of fields that differ between two settings."""
    differences: list[str] = []
    _diff(submitted.to_dict(), persisted.to_dict(), "", differences)
    return differences


def _diff(expected: Any, actual: Any, path: str, out: list[str]) -> None:
    if isinstance(expected, dict) and isinstance(actual, dict):
        for key in sorted(set(expected) | set(actual)):
            _diff(expected.get(key), actual.get(key), f"{path}.{key}" if path else key, out)
    elif isinstance(expected, list) and isinstance(actual, list):
        if len(expected) != len(actual):
            out.append(f"{path} (length {len(expected)} != {len(actual)})")
            return
        for index, (left, right) in enumerate(zip(expected, actual, strict=True)):
            _diff(left, right, f"{path}[{index}]", out)
    elif expected != actual:
        out.append(path)


class AutoscalePolicySynthesizer:
    """Build, submit and verify the autoscale policy of a hosted service role."""

    def __init__(
        self,
        client: ServiceManagementClient,
        config: AutoscalePolicyConfig | None = None,
    ):
        self.client = client
        self.config = config or AutoscalePolicyConfig()

    def _rule(
        self,
        metric_source: str,
        operator: ComparisonOperator,
        threshold: float,
        direction: ScaleDirection,
        step: int,
    ) -> ScaleRule:
        config = self.config
        return ScaleRule(
            metric_trigger=MetricTrigger(
                metric_name=config.metric_name,
                metric_namespace=config.metric_namespace,
                metric_source=metric_source,
                operator=operator,
                threshold=threshold,
                statistic=MetricStatistic(config.statistic),
                time_grain=timedelta(minutes=config.time_grain_minutes),
                time_aggregation=TimeAggregation(config.time_aggregation),
                time_window=timedelta(minutes=config.time_window_minutes),
            ),
            scale_action=ScaleAction(
                direction=direction,
                type=ScaleType.CHANGE_COUNT,
                value=str(step),
                cooldown=timedelta(minutes=config.cooldown_minutes),
            ),
        )

    def build(
        self, service_name: str, role_name: str, is_production: bool = True
    ) -> AutoscaleSetting:
        """Assemble the policy: one profile with a scale-out and a scale-in rule."""
        config = self.config
        metric_source = build_cloud_service_metric_source(service_name, role_name, is_production)

        profile = AutoscaleProfile(
            name=config.profile_name,
            capacity=ScaleCapacity(
                minimum=str(config.minimum_instances),
                maximum=str(config.maximum_instances),
                default=str(config.default_instances),
            ),
            recurrence=Recurrence(
                frequency=RecurrenceFrequency(config.recurrence_frequency),
                schedule=RecurrentSchedule(
                    days=list(config.recurrence_days),
                    hours=list(config.recurrence_hours),
                    minutes=list(config.recurrence_minutes),
                    time_zone=config.time_zone,
                ),
            ),
            rules=[
                self._rule(
                    metric_source,
                    ComparisonOperator.GREATER_THAN_OR_EQUAL,
                    config.scale_out_threshold,
                    ScaleDirection.INCREASE,
                    config.scale_out_step,
                ),
                self._rule(
                    metric_source,
                    ComparisonOperator.LESS_THAN_OR_EQUAL,
                    config.scale_in_threshold,
                    ScaleDirection.DECREASE,
                    config.scale_in_step,
                ),
            ],
        )
        return AutoscaleSetting(profiles=[profile], enabled=config.enabled)

    def submit(self, resource_id: str, setting: AutoscaleSetting) -> str:
        """Create or update the setting stored under resource_id.

        Returns:
            The provider's status code as a string, uninterpreted

        Raises:
            NotFoundError: Hosted service or role does not exist
            ProvisioningError: Any other provider rejection
        """
        logger.info(f"Submitting autoscale policy for {resource_id}")
        try:
            response = self.client.request(
                "PUT",
                SETTINGS_PATH,
                body=json.dumps(setting.to_dict()),
                content_type="application/json",
                api_version=self.client.settings.autoscale_api_version,
                params={"resourceId": resource_id},
            )
        except ResourceNotFoundError as e:
            raise NotFoundError.from_azure_error(e) from e
        except AzureError as e:
            raise ProvisioningError.from_azure_error(e) from e

        return str(response.status_code)

    def fetch(self, resource_id: str) -> AutoscaleSetting:
        """Read the setting stored under resource_id.

        Raises:
            NotFoundError: No setting stored under resource_id
            ProvisioningError: Any other provider failure or unreadable body
        """
        try:
            response = self.client.request(
                "GET",
                SETTINGS_PATH,
                content_type="application/json",
                api_version=self.client.settings.autoscale_api_version,
                params={"resourceId": resource_id},
            )
        except ResourceNotFoundError as e:
            raise NotFoundError.from_azure_error(e) from e
        except AzureError as e:
            raise ProvisioningError.from_azure_error(e) from e

        try:
            return AutoscaleSetting.from_dict(json.loads(response.body))
        except (KeyError, TypeError, ValueError) as e:
            raise ProvisioningError(
                f"Unreadable autoscale setting for {resource_id}: {e}",
                status_code=response.status_code,
            ) from e

    def verify(
        self, resource_id: str, submitted: AutoscaleSetting, strict: bool = False
    ) -> list[str]:
        """Read back the setting and compare it with what was submitted.

        Returns:
            Paths of differing fields (empty when persisted as submitted)

        Raises:
            AutoscaleVerificationError: strict and the settings differ
        """
        persisted = self.fetch(resource_id)
        differences = diff_settings(submitted, persisted)
        if differences and strict:
            raise AutoscaleVerificationError(
                f"Autoscale setting for {resource_id} differs from submitted: "
                f"{', '.join(differences)}",
                differences,
            )
        return differences

    def apply(
        self, service_name: str, role_name: str, is_production: bool = True
    ) -> AutoscaleResult:
        """Build, submit and verify the policy for a hosted service role.

        Raises:
            NotFoundError: Hosted service or role does not exist
            ProvisioningError: Submission rejected
        """
        resource_id = build_cloud_service_resource_id(service_name, role_name, is_production)
        setting = self.build(service_name, role_name, is_production)
        result = AutoscaleResult(
            status_code="",
            resource_id=resource_id,
            setting=setting,
            state=AutoscaleState.BUILT,
        )

        result.status_code = self.submit(resource_id, setting)
        result.state = AutoscaleState.SUBMITTED
        logger.info(f"Autoscale policy submitted for {resource_id} (status {result.status_code})")

        try:
            result.differences = self.verify(resource_id, setting)
        except (NotFoundError, ProvisioningError) as e:
            logger.warning(f"Autoscale policy for {resource_id} could not be verified: {e}")
            return result

        if result.differences:
            logger.warning(
                f"Autoscale policy for {resource_id} persisted with differences: "
                f"{', '.join(result.differences)}"
            )
        else:
            result.state = AutoscaleState.VERIFIED
            logger.info(f"Autoscale policy verified for {resource_id}")

        return result


__all__ = [
    "SETTINGS_PATH",
    "AutoscalePolicyConfig",
    "AutoscalePolicySynthesizer",
    "AutoscaleProfile",
    "AutoscaleResult",
    "AutoscaleSetting",
    "AutoscaleState",
    "ComparisonOperator",
    "MetricStatistic",
    "MetricTrigger",
    "Recurrence",
    "RecurrenceFrequency",
    "RecurrentSchedule",
    "ScaleAction",
    "ScaleCapacity",
    "ScaleDirection",
    "ScaleRule",
    "ScaleType",
    "TimeAggregation",
    "build_cloud_service_metric_source",
    "build_cloud_service_resource_id",
    "diff_settings",
    "format_duration",
    "parse_duration",
]
