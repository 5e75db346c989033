"""Shared test fixtures for all test modules."""

import pytest

from fakes import DOC_ID, FakeDocumentStore, FakeGenerationService, sample_units
from quickedit.document.tree import OutlineTree
from quickedit.models.config import EditConfig
from quickedit.services.exceptions import GenerationError


@pytest.fixture
def units():
    return sample_units()


@pytest.fixture
def store(units):
    return FakeDocumentStore(units)


@pytest.fixture
def tree(units):
    return OutlineTree.from_units(units, root_id=DOC_ID)


@pytest.fixture
def generation():
    return FakeGenerationService()


@pytest.fixture
def edit_config():
    """Edit settings with settle delays disabled."""
    return EditConfig(insert_settle_delay=0.0, delete_settle_delay=0.0)


@pytest.fixture
def generation_error():
    return GenerationError("Generation service returned HTTP 500")
