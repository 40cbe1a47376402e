from backend.app import tenant_slug
from backend.app.tenant_slug import (
    build_tenant_host,
    find_available_tenant_slug,
    is_valid_tenant_slug,
    normalize_tenant_slug,
    slugify_company_name,
    to_base36,
)


class _SlugCursor:
    def __init__(self, taken):
        self.taken = set(taken)
        self.checked = []
        self._row = None

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        if "from tenants where slug" not in text:
            raise AssertionError(f"unexpected SQL in test cursor: {text}")
        slug = params[0]
        self.checked.append(slug)
        self._row = {"?column?": 1} if slug in self.taken else None

    def fetchone(self):
        return self._row


def test_slug_validation():
    assert is_valid_tenant_slug("cafe-one")
    assert is_valid_tenant_slug("a")
    assert not is_valid_tenant_slug("")
    assert not is_valid_tenant_slug("-cafe")
    assert not is_valid_tenant_slug("cafe-")
    assert not is_valid_tenant_slug("Cafe")
    assert not is_valid_tenant_slug("a" * 64)
    assert normalize_tenant_slug("  Cafe-One ") == "cafe-one"


def test_slugify_company_name():
    assert slugify_company_name("Café  Olé & Sons!") == "cafe-ole-and-sons"
    assert slugify_company_name("   ") == ""
    assert len(slugify_company_name("x" * 100)) == 63


def test_build_tenant_host(monkeypatch):
    monkeypatch.setattr(tenant_slug.settings, "tenant_root_domain", "pos.example.com")
    assert build_tenant_host("cafe") == "cafe.pos.example.com"
    assert build_tenant_host("cafe", "other.io") == "cafe.other.io"


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"


def test_free_base_slug_is_used():
    cur = _SlugCursor(taken=[])
    out = find_available_tenant_slug(cur, "Blue Bottle")
    assert out == {"base_slug": "blue-bottle", "suggested_slug": "blue-bottle", "is_base_available": True}


def test_desired_slug_wins_over_company_name():
    cur = _SlugCursor(taken=[])
    out = find_available_tenant_slug(cur, "Blue Bottle", "bb")
    assert out["suggested_slug"] == "bb"


def test_taken_slug_gets_numeric_suffix():
    cur = _SlugCursor(taken=["blue", "blue-2"])
    out = find_available_tenant_slug(cur, "Blue")
    assert out == {"base_slug": "blue", "suggested_slug": "blue-3", "is_base_available": False}
    assert cur.checked == ["blue", "blue-2", "blue-3"]


def test_suffix_keeps_slug_within_length():
    base = "a" * 63
    cur = _SlugCursor(taken=[base])
    out = find_available_tenant_slug(cur, base)
    assert out["suggested_slug"].endswith("-2")
    assert len(out["suggested_slug"]) <= 63
    assert is_valid_tenant_slug(out["suggested_slug"])


def test_exhausted_suffixes_fall_back_to_time_stamp():
    taken = ["blue"] + [f"blue-{n}" for n in range(2, 51)]
    cur = _SlugCursor(taken=taken)
    out = find_available_tenant_slug(cur, "Blue")
    assert out["suggested_slug"].startswith("blue-")
    assert out["suggested_slug"] not in taken
    assert out["is_base_available"] is False


def test_invalid_base_is_reported_without_lookup():
    cur = _SlugCursor(taken=[])
    out = find_available_tenant_slug(cur, "!!!")
    assert out == {"base_slug": "", "suggested_slug": "", "is_base_available": False}
    assert cur.checked == []
