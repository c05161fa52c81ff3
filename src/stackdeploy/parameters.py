"""Resolution of template parameters against supplied and deployed values."""

import logging

from stackdeploy.errors import MissingParametersError
from stackdeploy.models import (
    ApiParameter,
    FormalParameter,
    ParameterChange,
    ParameterResolution,
)

logger = logging.getLogger(__name__)


class TemplateParameters:
    """The formal parameters declared by a template, in declaration order."""

    def __init__(self, params: dict[str, FormalParameter]):
        self.params = params

    @classmethod
    def from_template(cls, template: dict) -> "TemplateParameters":
        params = {}
        for key, decl in (template.get("Parameters") or {}).items():
            default = decl.get("Default")
            params[key] = FormalParameter(
                key=key,
                type=decl.get("Type", "String"),
                default=_stringify(default) if default is not None else None,
                description=decl.get("Description"),
            )
        return cls(params)

    def resolve(
        self,
        supplied: dict[str, str | None],
        deployed_values: dict[str, str] | None = None,
        use_previous_values: bool = True,
        stack_name: str | None = None,
    ) -> ParameterResolution:
        return resolve_parameters(
            self.params,
            supplied,
            deployed_values,
            use_previous_values=use_previous_values,
            stack_name=stack_name,
        )


def resolve_parameters(
    formal: dict[str, FormalParameter],
    supplied: dict[str, str | None],
    deployed_values: dict[str, str] | None = None,
    use_previous_values: bool = True,
    stack_name: str | None = None,
) -> ParameterResolution:
    """Compute the parameters to deploy with.

    For every formal parameter the supplied value wins, then the previously deployed
    value (sent as ``UsePreviousValue`` so CloudFormation does not see a change),
    then the template default. Parameters with none of these are reported together.
    Supplied keys the template does not declare are passed through so CloudFormation
    can reject the typo with its own message.
    """
    deployed_values = deployed_values or {}
    previous = deployed_values if use_previous_values else {}

    values: dict[str, str] = {}
    api_parameters: list[ApiParameter] = []
    missing: list[str] = []

    for key, param in formal.items():
        supplied_value = supplied.get(key)
        if supplied_value is not None:
            values[key] = supplied_value
            api_parameters.append(ApiParameter(key=key, value=supplied_value))
            continue

        if key in previous:
            values[key] = previous[key]
            api_parameters.append(ApiParameter(key=key, use_previous_value=True))
            continue

        if param.default is not None:
            values[key] = param.default
            continue

        missing.append(key)

    if missing:
        raise MissingParametersError(missing, stack_name=stack_name)

    for key, value in supplied.items():
        if key not in formal and value:
            logger.debug("Passing through parameter %s, which the template does not declare", key)
            values[key] = value
            api_parameters.append(ApiParameter(key=key, value=value))

    return ParameterResolution(
        values=values,
        api_parameters=api_parameters,
        changes=_compare(formal, values, deployed_values),
    )


def _compare(
    formal: dict[str, FormalParameter],
    values: dict[str, str],
    deployed_values: dict[str, str],
) -> ParameterChange:
    if any(param.is_runtime_sourced for param in formal.values()):
        return ParameterChange.INDETERMINATE

    if values != deployed_values:
        return ParameterChange.CHANGED

    return ParameterChange.UNCHANGED


def _stringify(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(str(v) for v in value)
    return str(value)
