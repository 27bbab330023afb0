"""
Tests for session_scope() commit / rollback semantics.
"""

import pytest

from workflow_kernel.db.engine import session_scope
from workflow_kernel.exceptions import InvalidTemplateError
from workflow_kernel.selectors.template_selector import TemplateSelector
from workflow_kernel.services.template_catalog import TemplateCatalogService


def test_commits_on_normal_exit(session_factory, session):
    with session_scope(session_factory) as scoped:
        TemplateCatalogService(scoped).create_template("Expenses")

    names = [t.name for t in TemplateSelector(session).list_templates()]
    assert names == ["Expenses"]


def test_rolls_back_on_error(session_factory, session):
    with pytest.raises(InvalidTemplateError):
        with session_scope(session_factory) as scoped:
            catalog = TemplateCatalogService(scoped)
            catalog.create_template("Expenses")
            catalog.create_template("   ")

    assert TemplateSelector(session).list_templates() == ()
