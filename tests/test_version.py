import pytest

from upack.errors import InvalidVersionError
from upack.package import PackageIdentifier
from upack.version import UniversalPackageVersion, is_unspecified, parse_partial


def V(s):
    return UniversalPackageVersion.parse(s)


def test_parse_full_version():
    v = V("1.2.3-beta.1+build.7")
    assert (v.major, v.minor, v.patch) == (1, 2, 3)
    assert v.prerelease == "beta.1"
    assert v.build == "build.7"
    assert v.is_prerelease
    assert str(v) == "1.2.3-beta.1+build.7"


@pytest.mark.parametrize("bad", [
    "", "1", "1.2", "1.2.3.4", "v1.2.3", "1.2.3-", "1.2.x", "latest",
    "01.2.3", "1.02.3", "1.2.03", "1.0.0-01", "1.0.0-rc.007",
])
def test_parse_rejects_malformed(bad):
    with pytest.raises(InvalidVersionError):
        V(bad)


def test_invalid_version_is_value_error():
    assert issubclass(InvalidVersionError, ValueError)
    assert UniversalPackageVersion.try_parse("nope") is None


def test_release_ordering():
    assert V("1.0.0") < V("1.1.0") < V("2.0.0-beta") < V("2.0.0")
    assert max([V("1.0.0"), V("1.1.0"), V("2.0.0-beta")]) == V("2.0.0-beta")
    assert V("1.10.0") > V("1.9.0")


def test_prerelease_precedence_follows_semver():
    ordered = [
        "1.0.0-alpha",
        "1.0.0-alpha.1",
        "1.0.0-alpha.beta",
        "1.0.0-beta",
        "1.0.0-beta.2",
        "1.0.0-beta.11",
        "1.0.0-rc.1",
        "1.0.0",
    ]
    versions = [V(s) for s in ordered]
    assert sorted(reversed(versions)) == versions


def test_build_metadata_breaks_ties_only():
    assert V("1.0.0+a") < V("1.0.0+b")
    assert V("1.0.0+zzz") < V("1.0.1")
    assert len({V("1.2.3"), V("1.2.3")}) == 1


def test_version_text_is_canonical():
    # one spelling per version: equal versions share hash and string form
    assert str(V("1.0.0-0alpha.0+001")) == "1.0.0-0alpha.0+001"
    assert hash(V("1.0.0-rc.1")) == hash(V(" 1.0.0-rc.1 "))
    assert parse_partial("01") is None
    assert parse_partial("1.02") is None
    assert parse_partial("0.10") == (0, 10)


def test_matches_prefix():
    assert V("1.2.9").matches_prefix((1, 2))
    assert V("1.2.9").matches_prefix((1,))
    assert V("1.2.9").matches_prefix(())
    assert not V("1.3.0").matches_prefix((1, 2))


def test_unspecified_and_partial_specs():
    assert is_unspecified(None)
    assert is_unspecified("")
    assert is_unspecified("LATEST")
    assert not is_unspecified("1.0.0")
    assert parse_partial("1") == (1,)
    assert parse_partial("1.2") == (1, 2)
    assert parse_partial("1.2.3") is None
    assert parse_partial("abc") is None


def test_package_identifier_parse():
    assert PackageIdentifier.parse("group/sub:name") == PackageIdentifier(name="name", group="group/sub")
    assert PackageIdentifier.parse("name") == PackageIdentifier(name="name")
    assert PackageIdentifier.parse(":name").group is None
    # only the first ':' separates group from name
    assert PackageIdentifier.parse("a:b:c") == PackageIdentifier(name="b:c", group="a")
    assert str(PackageIdentifier.parse("g:n")) == "g:n"
    with pytest.raises(ValueError):
        PackageIdentifier.parse("group:")
