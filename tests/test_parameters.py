"""Tests for template parameter resolution."""

import pytest

from stackdeploy.errors import MissingParametersError
from stackdeploy.models import ApiParameter, FormalParameter, ParameterChange
from stackdeploy.parameters import TemplateParameters, resolve_parameters


def _formal(**params):
    return {key: FormalParameter(key, default=default) for key, default in params.items()}


def test_from_template_reads_declarations():
    params = TemplateParameters.from_template(
        {
            "Parameters": {
                "Env": {"Type": "String", "Default": "dev", "Description": "Environment"},
                "Count": {"Type": "Number", "Default": 3},
                "Enabled": {"Type": "String", "Default": True},
                "Subnets": {"Type": "CommaDelimitedList", "Default": ["a", "b"]},
                "Name": {"Type": "String"},
            }
        }
    ).params

    assert list(params) == ["Env", "Count", "Enabled", "Subnets", "Name"]
    assert params["Env"].description == "Environment"
    assert params["Count"].default == "3"
    assert params["Enabled"].default == "true"
    assert params["Subnets"].default == "a,b"
    assert params["Name"].default is None


def test_from_template_without_parameters():
    assert TemplateParameters.from_template({"Resources": {}}).params == {}


def test_supplied_value_wins():
    resolution = resolve_parameters(_formal(Env="dev"), {"Env": "prod"}, {"Env": "staging"})

    assert resolution.values == {"Env": "prod"}
    assert resolution.api_parameters == [ApiParameter("Env", "prod")]
    assert resolution.changes == ParameterChange.CHANGED


def test_previous_value_is_reused():
    resolution = resolve_parameters(_formal(Env=None), {}, {"Env": "prod"})

    assert resolution.values == {"Env": "prod"}
    assert resolution.api_parameters == [ApiParameter("Env", use_previous_value=True)]
    assert resolution.changes == ParameterChange.UNCHANGED


def test_previous_values_ignored_when_disabled():
    resolution = resolve_parameters(
        _formal(Env="dev"), {}, {"Env": "prod"}, use_previous_values=False
    )

    assert resolution.values == {"Env": "dev"}
    assert resolution.api_parameters == []
    assert resolution.changes == ParameterChange.CHANGED


def test_default_is_not_sent():
    resolution = resolve_parameters(_formal(Env="dev"), {})

    assert resolution.values == {"Env": "dev"}
    assert resolution.api_parameters == []


def test_none_supplied_value_falls_through_to_default():
    resolution = resolve_parameters(_formal(Env="dev"), {"Env": None})
    assert resolution.values == {"Env": "dev"}


def test_every_source_resolves():
    formal = _formal(A="default", B=None, C=None)
    resolution = resolve_parameters(formal, {"B": "supplied"}, {"C": "previous"})

    assert resolution.values == {"A": "default", "B": "supplied", "C": "previous"}


@pytest.mark.parametrize("dropped", ["B", "C"])
def test_missing_parameter_is_named(dropped):
    formal = _formal(A="default", B=None, C=None)
    supplied = {"B": "supplied"}
    previous = {"C": "previous"}
    supplied.pop(dropped, None)
    previous.pop(dropped, None)

    with pytest.raises(MissingParametersError) as exc_info:
        resolve_parameters(formal, supplied, previous)

    assert exc_info.value.missing == [dropped]


def test_all_missing_parameters_reported_together():
    with pytest.raises(MissingParametersError) as exc_info:
        resolve_parameters(_formal(A=None, B=None), {})

    assert exc_info.value.missing == ["A", "B"]
    assert "A, B" in str(exc_info.value)


def test_unknown_parameters_are_passed_through():
    resolution = resolve_parameters(_formal(A="x"), {"Typo": "value", "Empty": ""})

    assert resolution.values == {"A": "x", "Typo": "value"}
    assert ApiParameter("Typo", "value") in resolution.api_parameters
    assert all(p.key != "Empty" for p in resolution.api_parameters)


def test_removed_parameter_counts_as_change():
    resolution = resolve_parameters(_formal(A="x"), {}, {"A": "x", "Old": "y"})
    assert resolution.changes == ParameterChange.CHANGED


def test_runtime_sourced_parameter_is_indeterminate():
    formal = {
        "Ami": FormalParameter("Ami", type="AWS::SSM::Parameter::Value<String>", default="/ami"),
    }
    resolution = resolve_parameters(formal, {"Ami": "/ami"}, {"Ami": "/ami"})

    assert resolution.changes == ParameterChange.INDETERMINATE
    assert resolution.has_changes


def test_opted_out_runtime_parameter_compares_normally():
    formal = {
        "Ami": FormalParameter(
            "Ami",
            type="AWS::SSM::Parameter::Value<String>",
            default="/ami",
            description="[stackdeploy:skip]",
        ),
    }
    resolution = resolve_parameters(formal, {"Ami": "/ami"}, {"Ami": "/ami"})

    assert resolution.changes == ParameterChange.UNCHANGED


def test_missing_parameters_name_the_stack():
    with pytest.raises(MissingParametersError) as exc_info:
        TemplateParameters(_formal(Env=None)).resolve({}, stack_name="my-stack")

    assert exc_info.value.stack_name == "my-stack"
    assert str(exc_info.value) == (
        "my-stack: The following CloudFormation Parameters are missing a value: Env"
    )
