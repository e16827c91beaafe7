"""
Program compiler.

Turns a data-fetch snippet and an optional target call into the program
text that nodes of the threshold network execute. The snippet is the body
of a Python function that returns an ordered list of values, e.g.

    import requests
    forecast = requests.get(URL, timeout=10).json()
    period = forecast["properties"]["periods"][0]
    return [period["temperature"], period["probabilityOfPrecipitation"]["value"] or 0]

Nodes run the program with two names in scope: ``actions`` (the node's
ProgramActions) and ``params`` (the per-call parameters).
"""
import logging
import textwrap
from typing import Optional, Union

from .abi import FunctionDescriptor
from .cid import compute_cid
from .models import Program

logger = logging.getLogger(__name__)

PROGRAM_TEMPLATE = '''\
# oraclekit program v1
from oraclekit.runtime import run_program

FUNCTION_SIGNATURE = {signature!r}


def fetch_data():
{body}


run_program(fetch_data, FUNCTION_SIGNATURE, actions, params)
'''


def compile_program(
    fetch_snippet: str,
    function: Optional[Union[str, FunctionDescriptor]] = None,
) -> Program:
    """
    Compile a data-fetch snippet into a content-addressed program.

    The snippet is dedented and stripped of leading and trailing blank
    lines before it is embedded, so snippets that differ only in common
    indentation or surrounding blank lines compile to the same program and
    get the same content address. Nothing else is normalized; any other
    change, whitespace inside a line included, gives a new address.

    The snippet is not validated; a broken snippet only fails when the
    program is executed.

    Args:
        fetch_snippet: Python function body returning an ordered list of values
        function: Target call signature or descriptor. Without one, the
            program only returns the fetched values.

    Returns:
        Program with its text and content address
    """
    signature = None
    if function is not None:
        signature = FunctionDescriptor.parse(function).to_human()

    body = textwrap.indent(textwrap.dedent(fetch_snippet).strip("\n"), "    ")
    text = PROGRAM_TEMPLATE.format(signature=signature, body=body)
    program = Program(text=text, content_address=compute_cid(text))

    logger.debug(f"Compiled program {program.content_address[:10]}… ({len(text)} bytes)")
    return program
