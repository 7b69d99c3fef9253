"""Tests for the heuristic workflow planner."""

import pytest

from afterburn.models import FormField, FormInfo, InteractiveElement, PageData, PartialPageData
from afterburn.models.discovery import ElementType, WorkflowPriority
from afterburn.services.crawler import SiteCrawler
from afterburn.services.heuristic_planner import (
    HeuristicPlanner,
    classify_form,
    field_selector,
    submit_selector,
)
from afterburn.services.sitemap_builder import build_sitemap

from conftest import FakeBrowserManager, FakeSite


def _login_form(selector="form#login", action="https://example.com/login"):
    return FormInfo(
        action=action,
        method="POST",
        selector=selector,
        fields=[
            FormField(type="email", name="email", label="Email"),
            FormField(type="password", name="password", label="Password"),
        ],
    )


def _button(selector, text, visible=True):
    return InteractiveElement(type=ElementType.BUTTON, selector=selector, text=text, visible=visible)


class TestClassifyForm:
    """Tests for classify_form."""

    def test_login(self):
        """Should classify email + password forms as login."""
        assert classify_form(_login_form()) == "login"

    def test_signup_with_confirm(self):
        """Should classify forms with a confirm field as signup."""
        form = _login_form(action="https://example.com/account")
        form.fields.append(FormField(type="password", name="confirm_password"))

        assert classify_form(form, "https://example.com/account") == "signup"

    def test_signup_by_name_fields(self):
        """Should classify name + email + password forms as signup."""
        form = FormInfo(
            selector="form#register",
            fields=[
                FormField(type="text", name="firstName"),
                FormField(type="text", name="lastName"),
                FormField(type="email", name="email"),
                FormField(type="password", name="password"),
            ],
        )
        assert classify_form(form, "https://example.com/") == "signup"

    def test_signup_by_url(self):
        """Should use a register URL as a signup signal."""
        form = _login_form(action="https://example.com/register")
        assert classify_form(form) == "signup"

    def test_login_path_beats_name_field(self):
        """Should keep a /sign-in form as login even with a username field."""
        form = FormInfo(
            action="",
            selector="form#auth",
            fields=[
                FormField(type="text", name="username"),
                FormField(type="email", name="email"),
                FormField(type="password", name="password"),
            ],
        )
        assert classify_form(form, "https://example.com/sign-in") == "login"

    def test_search(self):
        """Should classify search forms."""
        form = FormInfo(
            action="https://example.com/search",
            selector="form#s",
            fields=[FormField(type="search", name="q")],
        )
        assert classify_form(form) == "search"

    def test_contact(self):
        """Should classify forms with a message field as contact."""
        form = FormInfo(
            selector="form#c",
            fields=[FormField(type="text", name="name"), FormField(type="textarea", name="message")],
        )
        assert classify_form(form) == "contact"

    def test_general(self):
        """Should fall back to general."""
        form = FormInfo(selector="form#x", fields=[FormField(type="text", name="color")])
        assert classify_form(form) == "general"


class TestSelectors:
    """Tests for selector helpers."""

    def test_submit_selector_scoped(self):
        """Should scope every submit shape to the form."""
        selector = submit_selector("form#login")

        assert 'form#login button[type="submit"]' in selector
        assert 'form#login input[type="submit"]' in selector
        assert "form#login button:not([type])" in selector

    def test_field_by_name(self):
        """Should prefer the name attribute."""
        form = _login_form()
        assert field_selector(form, form.fields[0]) == 'form#login [name="email"]'

    def test_field_by_label(self):
        """Should fall back to a label locator with escaped quotes."""
        form = FormInfo(selector="form#x")
        field = FormField(type="text", label="Driver's  licence")

        assert field_selector(form, field) == "getByLabel('Driver\\'s licence')"


def _sitemap(pages):
    return build_sitemap(pages, "https://example.com")


class TestHeuristicPlanner:
    """Tests for HeuristicPlanner.synthesize."""

    def test_form_workflow_steps(self):
        """Should produce navigate, fills, submit and expect for a form."""
        sitemap = _sitemap([
            PageData(url="https://example.com/"),
            PageData(url="https://example.com/login", title="Sign in", forms=[_login_form()]),
        ])

        plans = HeuristicPlanner().synthesize(sitemap)
        login = next(p for p in plans if p.workflow_name == "Login Form (/login)")

        assert [s.action for s in login.steps] == ["navigate", "fill", "fill", "click", "expect"]
        assert login.priority == WorkflowPriority.CRITICAL
        assert login.steps[1].value == "test@example.com"
        assert login.estimated_duration == 14

    def test_excludes_non_actionable_fields(self):
        """Should not fill hidden, disabled or unnamed fields."""
        form = FormInfo(
            selector="form#c",
            fields=[
                FormField(type="hidden", name="csrf"),
                FormField(type="text", name="locked", disabled=True),
                FormField(type="text", name="", label=""),
                FormField(type="text", name="subject"),
            ],
        )
        sitemap = _sitemap([PageData(url="https://example.com/", forms=[form])])

        plan = HeuristicPlanner().synthesize(sitemap)[0]
        fills = [s for s in plan.steps if s.action == "fill"]

        assert [s.selector for s in fills] == ['form#c [name="subject"]']

    def test_dedupes_forms_on_same_path(self):
        """Should keep one plan when two forms share kind and path."""
        sitemap = _sitemap([
            PageData(
                url="https://example.com/login",
                forms=[_login_form("form#a"), _login_form("form#b")],
            ),
        ])
        names = [p.workflow_name for p in HeuristicPlanner().synthesize(sitemap)]

        assert names.count("Login Form (/login)") == 1

    def test_keeps_forms_on_different_paths(self):
        """Should keep one plan per path."""
        sitemap = _sitemap([
            PageData(url="https://example.com/login", forms=[_login_form()]),
            PageData(url="https://example.com/admin/login", forms=[_login_form()]),
        ])
        names = {p.workflow_name for p in HeuristicPlanner().synthesize(sitemap)}

        assert "Login Form (/login)" in names
        assert "Login Form (/admin/login)" in names

    def test_button_rules(self):
        """Should skip hidden, empty and destructive buttons and cap per page."""
        buttons = [
            _button("#a", "Alpha"),
            _button("#hidden", "Hidden", visible=False),
            _button("#empty", "   "),
            _button("#del", "Delete account"),
            _button("#b", "Beta"),
            _button("#c", "Gamma"),
            _button("#d", "Delta"),
        ]
        sitemap = _sitemap([PageData(url="https://example.com/", buttons=buttons)])

        names = [p.workflow_name for p in HeuristicPlanner().synthesize(sitemap)]
        button_names = [n for n in names if n.startswith("Click")]

        assert button_names == ['Click "Alpha" Button', 'Click "Beta" Button', 'Click "Gamma" Button']

    def test_caps_and_sorts_by_priority(self):
        """Should return at most eight plans, critical first."""
        pages = [
            PageData(url="https://example.com/"),
            PageData(url="https://example.com/login", forms=[_login_form()]),
        ]
        for index in range(10):
            pages.append(PageData(
                url=f"https://example.com/p{index}",
                forms=[FormInfo(selector=f"form#f{index}", fields=[FormField(type="text", name="color")])],
            ))
        plans = HeuristicPlanner().synthesize(_sitemap(pages))

        assert len(plans) <= 8
        assert plans[0].priority == WorkflowPriority.CRITICAL
        order = [p.priority for p in plans]
        assert order == sorted(order, key=["critical", "important", "nice-to-have"].index)

    def test_navigation_workflow(self):
        """Should visit shallow pages in one navigation plan."""
        sitemap = _sitemap([
            PageData(url="https://example.com/", title="Home"),
            PageData(url="https://example.com/about", title="About"),
        ])
        plans = HeuristicPlanner().synthesize(sitemap)
        nav = next(p for p in plans if p.workflow_name == "Core Page Navigation")

        assert all(s.action == "navigate" for s in nav.steps)
        assert len(nav.steps) == 2

    @pytest.mark.asyncio
    async def test_generate_plans_ignores_hints(self):
        """Should return the same plans regardless of hints."""
        sitemap = _sitemap([PageData(url="https://example.com/login", forms=[_login_form()])])
        planner = HeuristicPlanner()

        with_hints = await planner.generate_plans(sitemap, ["test checkout"])
        without = await planner.generate_plans(sitemap, [])

        assert [p.workflow_name for p in with_hints] == [p.workflow_name for p in without]


class TestCrawlToPlan:
    """Crawl a small site and plan workflows from it."""

    @pytest.mark.asyncio
    async def test_login_site_gives_one_login_plan(self):
        """Should visit /login once despite a trailing-slash variant and plan it once."""
        site = FakeSite({
            "https://example.com/": ("Home", [
                "https://example.com/login",
                "https://example.com/login/",
            ]),
            "https://example.com/login": ("Sign in", []),
        })

        async def processor(page, url):
            if url.endswith("/login"):
                return PartialPageData(forms=[_login_form()])
            return PartialPageData()

        crawler = SiteCrawler(FakeBrowserManager(site), page_processor=processor, settle_ms=0)
        result = await crawler.crawl("https://example.com/")

        assert len(result.pages) == 2

        plans = HeuristicPlanner().synthesize(build_sitemap(result.pages, "https://example.com/"))
        login_plans = [p for p in plans if p.workflow_name == "Login Form (/login)"]

        assert len(login_plans) == 1
        assert [s.action for s in login_plans[0].steps] == ["navigate", "fill", "fill", "click", "expect"]
