"""
Tests for the Application Factory.
"""

import gc
import weakref

import followup_engine.app as app_module
from followup_engine.app import STORE_EXTENSION_KEY, create_app
from followup_engine.infrastructure.store import InMemoryStore


class TestCreateApp:
    """Tests for create_app."""

    def test_store_is_registered_on_the_app(self, test_settings):
        store = InMemoryStore()

        app = create_app({"TESTING": True}, store=store, app_settings=test_settings)

        assert app.extensions[STORE_EXTENSION_KEY] is store
        assert store in app_module._stores

    def test_store_is_released_with_its_app(self, test_settings):
        """Discarded applications do not keep their stores alive."""
        store = InMemoryStore()
        app = create_app({"TESTING": True}, store=store, app_settings=test_settings)
        store_ref = weakref.ref(store)

        del app, store
        gc.collect()

        assert store_ref() is None

    def test_each_app_keeps_its_own_store(self, test_settings):
        first = create_app(store=InMemoryStore(), app_settings=test_settings)
        second = create_app(store=InMemoryStore(), app_settings=test_settings)

        assert first.extensions[STORE_EXTENSION_KEY] is not second.extensions[STORE_EXTENSION_KEY]
