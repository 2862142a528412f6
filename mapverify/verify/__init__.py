"""Fixtures, property checks and the verification driver."""

from .checks import AssertionFailure, CheckReport, MappedText
from .driver import JobResult, RunResult, VerificationDriver
from .fixtures import Fixture, FixtureWorkspace, builtin_fixtures

__all__ = [
    'AssertionFailure',
    'CheckReport',
    'MappedText',
    'JobResult',
    'RunResult',
    'VerificationDriver',
    'Fixture',
    'FixtureWorkspace',
    'builtin_fixtures',
]
