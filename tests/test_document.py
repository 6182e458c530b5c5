"""Unit tests for src.fragments.document and src.fragments.custom_elements."""

from __future__ import annotations

import asyncio
import gc
import json
import weakref
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from bs4 import BeautifulSoup

from src.fragments.custom_elements import CustomElementRegistry
from src.fragments.document import (
    HostDocument,
    active_document,
    import_behavior_module,
    set_active_document,
)
from src.fragments.fragment import Fragment


def _parsed(markup: str):
    return BeautifulSoup(markup, "html.parser").contents[0]


class TestNodes:
    def test_created_scripts_are_executable(self, document: HostDocument):
        assert document.is_executable(document.create_element("script"))

    def test_parsed_scripts_are_inert(self, document: HostDocument):
        assert not document.is_executable(_parsed("<script>x()</script>"))

    def test_copies_of_executable_scripts_are_inert(self, document: HostDocument):
        script = document.create_element("script", {"src": "a"})
        assert not document.is_executable(document.import_node(script))

    def test_import_node_is_deep_and_detached(self, document: HostDocument):
        source = _parsed("<div><p>a</p></div>")
        copy = document.import_node(source)
        assert str(copy) == str(source)
        assert copy is not source
        assert copy.parent is None
        copy.p.string = "changed"
        assert source.p.get_text() == "a"

    def test_import_container(self, document: HostDocument):
        soup = BeautifulSoup("<i>1</i> <b>2</b>", "html.parser")
        copy = document.import_node(soup)
        assert isinstance(copy, BeautifulSoup)
        assert copy is not soup
        assert [str(node) for node in copy.contents] == ["<i>1</i>", " ", "<b>2</b>"]
        assert len(soup.contents) == 3


class TestShadowRoots:
    def test_attach_open(self, document: HostDocument):
        host = document.create_element("x-card")
        shadow = document.attach_shadow(host, "open")
        assert document.shadow_root(host) is shadow
        assert shadow.mode == "open"
        assert shadow.host is host

    def test_closed_root_is_hidden(self, document: HostDocument):
        host = document.create_element("x-card")
        document.attach_shadow(host, "closed")
        assert document.shadow_root(host) is None

    def test_second_attach_fails(self, document: HostDocument):
        host = document.create_element("x-card")
        document.attach_shadow(host, "open")
        with pytest.raises(ValueError, match="already hosts"):
            document.attach_shadow(host, "open")

    def test_invalid_mode(self, document: HostDocument):
        with pytest.raises(ValueError, match="invalid shadow root mode"):
            document.attach_shadow(document.create_element("div"), "sideways")

    def test_equal_hosts_are_distinct(self, document: HostDocument):
        first = document.create_element("x-card")
        second = document.create_element("x-card")
        assert first == second  # bs4 compares by markup
        document.attach_shadow(first, "open")
        assert document.shadow_root(second) is None

    def test_walk_descends_into_shadow_roots(self, document: HostDocument):
        host = document.create_element("x-card")
        light = document.create_element("span")
        host.append(light)
        shadow = document.attach_shadow(host, "closed")
        inner = document.create_element("p")
        shadow.append(inner)
        assert [element.name for element in document.walk(host)] == ["x-card", "p", "span"]

    def test_dropped_hosts_release_their_shadow_roots(self, document: HostDocument):
        fragment = Fragment.of(
            BeautifulSoup('<x-a><template shadowrootmode="open"><p>x</p></template></x-a>', "html.parser").contents[0]
        )
        clones = [fragment.clone(document) for _ in range(100)]
        assert len(document._shadow_roots) == 100
        del clones
        gc.collect()
        assert document._shadow_roots == {}

    def test_shadow_root_does_not_keep_its_host_alive(self, document: HostDocument):
        host = document.create_element("x-card")
        shadow = document.attach_shadow(host, "open")
        host_ref = weakref.ref(host)
        del host
        gc.collect()
        assert host_ref() is None
        assert shadow.host is None


class TestConnecting:
    @pytest.mark.asyncio
    async def test_connecting_starts_module_script(self, document: HostDocument, loader: AsyncMock):
        script = document.create_element("script", {"type": "module", "src": "widgets.card"})
        document.append(script)
        await document.settle()
        loader.assert_awaited_once_with("widgets.card")
        assert document.is_loaded("widgets.card")
        assert script.parent is document.body

    @pytest.mark.asyncio
    async def test_module_scripts_load_once(self, document: HostDocument, loader: AsyncMock):
        for _ in range(3):
            document.append(document.create_element("script", {"type": "module", "src": "m"}))
        await document.settle()
        loader.assert_awaited_once_with("m")

    @pytest.mark.asyncio
    async def test_classic_scripts_load_every_time(self, document: HostDocument, loader: AsyncMock):
        for _ in range(2):
            document.append(document.create_element("script", {"src": "legacy"}))
        await document.settle()
        assert loader.await_count == 2

    @pytest.mark.asyncio
    async def test_inline_script_runs(self, document: HostDocument, loader: AsyncMock):
        script = document.create_element("script")
        script.string = "init()"
        document.append(script)
        assert document.inline_scripts_run == [script]
        loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_script_starts_only_once(self, document: HostDocument, loader: AsyncMock):
        script = document.create_element("script", {"type": "module", "src": "m"})
        document.append(script)
        document.append(script, parent=document.head)
        await document.settle()
        loader.assert_awaited_once_with("m")

    @pytest.mark.asyncio
    async def test_inert_script_never_starts(self, document: HostDocument, loader: AsyncMock):
        document.append(_parsed('<script type="module" src="m"></script>'))
        await document.settle()
        loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_append_container_moves_children(self, document: HostDocument):
        container = BeautifulSoup("<i>1</i><b>2</b>", "html.parser")
        document.append(container)
        assert container.contents == []
        assert [node.name for node in document.body.contents] == ["i", "b"]

    def test_script_connected_outside_event_loop_loads_on_settle(
        self, document: HostDocument, loader: AsyncMock
    ):
        script = document.create_element("script", {"type": "module", "src": "widgets.card"})
        document.append(script)
        loader.assert_not_awaited()
        asyncio.run(document.settle())
        loader.assert_awaited_once_with("widgets.card")
        assert document.is_loaded("widgets.card")


class TestModules:
    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_import(self, document: HostDocument, loader: AsyncMock):
        first, second = await asyncio.gather(
            document.load_module("shared"), document.load_module("shared")
        )
        assert first is second
        loader.assert_awaited_once_with("shared")

    @pytest.mark.asyncio
    async def test_define_hook_registers_elements(self):
        def define(registry: CustomElementRegistry) -> None:
            registry.define("x-card", lambda element: SimpleNamespace(element=element))

        document = HostDocument(AsyncMock(return_value=SimpleNamespace(define=define)))
        await document.load_module("widgets.card")
        assert document.custom_elements.get("x-card") is not None

    @pytest.mark.asyncio
    async def test_failed_load_propagates(self):
        document = HostDocument(AsyncMock(side_effect=ImportError("no module named widgets")))
        with pytest.raises(ImportError):
            await document.load_module("widgets")
        assert not document.is_loaded("widgets")

    @pytest.mark.asyncio
    async def test_default_loader_imports_python_modules(self):
        assert await import_behavior_module("json") is json
        assert (await import_behavior_module("./json/decoder.py")).__name__ == "json.decoder"


class TestCustomElements:
    def test_connect_upgrades_defined_elements(self, document: HostDocument):
        document.custom_elements.define("x-card", lambda element: {"name": element.name})
        card = document.create_element("x-card")
        document.append(card)
        assert document.custom_elements.instance(card) == {"name": "x-card"}

    def test_define_upgrades_connected_elements(self, document: HostDocument):
        card = document.create_element("x-card")
        document.append(card)
        assert not document.custom_elements.is_upgraded(card)
        document.custom_elements.define("x-card", lambda element: "upgraded")
        assert document.custom_elements.instance(card) == "upgraded"

    def test_define_does_not_upgrade_detached_elements(self, document: HostDocument):
        card = document.create_element("x-card")
        document.custom_elements.define("x-card", lambda element: "upgraded")
        assert not document.custom_elements.is_upgraded(card)
        assert document.upgrade(card) == 1

    def test_upgrade_runs_once(self, document: HostDocument):
        calls: list[str] = []
        document.custom_elements.define("x-card", lambda element: calls.append("up"))
        card = document.create_element("x-card")
        document.append(card)
        document.upgrade(card)
        assert calls == ["up"]

    def test_invalid_name(self):
        with pytest.raises(ValueError, match="not a valid custom element name"):
            CustomElementRegistry().define("card", lambda element: None)

    def test_redefinition(self):
        registry = CustomElementRegistry()
        registry.define("x-card", lambda element: None)
        with pytest.raises(ValueError, match="already been defined"):
            registry.define("X-Card", lambda element: None)

    def test_instance_does_not_keep_its_element_alive(self, document: HostDocument):
        document.custom_elements.define("x-card", lambda element: SimpleNamespace(element=element))
        card = document.create_element("x-card")
        assert document.upgrade(card) == 1
        card_ref = weakref.ref(card)
        del card
        gc.collect()
        assert card_ref() is None

    def test_copies_are_not_upgraded(self, document: HostDocument):
        document.custom_elements.define("x-card", lambda element: "upgraded")
        card = document.create_element("x-card")
        document.upgrade(card)
        assert not document.custom_elements.is_upgraded(document.import_node(card))

    def test_registries_upgrade_independently(self, document: HostDocument):
        other = CustomElementRegistry()
        document.custom_elements.define("x-card", lambda element: "mine")
        other.define("x-card", lambda element: "theirs")
        card = document.create_element("x-card")
        document.upgrade(card)
        assert not other.is_upgraded(card)
        assert other.upgrade(card)
        assert document.custom_elements.instance(card) == "mine"
        assert other.instance(card) == "theirs"


class TestActiveDocument:
    def test_default_is_created_once(self):
        set_active_document(None)
        try:
            assert active_document() is active_document()
        finally:
            set_active_document(None)

    def test_set_active_document(self, document: HostDocument):
        set_active_document(document)
        try:
            assert active_document() is document
        finally:
            set_active_document(None)
