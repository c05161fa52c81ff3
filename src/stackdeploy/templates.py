"""Parsing of JSON and YAML CloudFormation templates."""

import json

import yaml


class CloudFormationLoader(yaml.SafeLoader):
    """SafeLoader that understands the short form of intrinsic functions (``!Ref``, ``!Sub``...)."""


def _construct_intrinsic(loader: CloudFormationLoader, suffix: str, node: yaml.Node) -> dict:
    if suffix in ("Ref", "Condition"):
        name = suffix
    else:
        name = f"Fn::{suffix}"

    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        # !GetAtt Resource.Attribute is the short form of [Resource, Attribute].
        if suffix == "GetAtt":
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {name: value}


CloudFormationLoader.add_multi_constructor("!", _construct_intrinsic)


def parse_template(body: str) -> dict:
    """Parse a template body. JSON is tried first; anything else is read as YAML.

    Raises yaml.YAMLError if the body is neither.
    """
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError:
        return yaml.load(body, Loader=CloudFormationLoader) or {}
