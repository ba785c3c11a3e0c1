"""
Tests for plugin metadata extraction.
"""

from services.oxideindex.extractor import (
    clean_value,
    extract_plugin_metadata,
    is_oxide_plugin,
    parse_description,
    parse_plugin_info,
)


POSITIONAL_SOURCE = '''
using Oxide.Core;

namespace Oxide.Plugins
{
    [Info("Better Chat", "LaserHydra", "5.2.0", ResourceId = 979)]
    [Description("Allows to manage chat titles and colors")]
    public class BetterChat : CovalencePlugin
    {
    }
}
'''


class TestInfoAttribute:
    """Test [Info(...)] parsing."""

    def test_positional_with_named_resource(self):
        info = parse_plugin_info(POSITIONAL_SOURCE)
        assert info.name == "Better Chat"
        assert info.author == "LaserHydra"
        assert info.version == "5.2.0"
        assert info.resource_id == "979"
        assert info.source == "info-positional"

    def test_named_parameters(self):
        source = '[Info(Title = "Kits", Author = "k1lly0u", Version = "4.0.0")]\nclass Kits : RustPlugin {}'
        info = parse_plugin_info(source)
        assert info.name == "Kits"
        assert info.author == "k1lly0u"
        assert info.version == "4.0.0"
        assert info.source == "info-named"

    def test_single_quoted_and_bare_values(self):
        info = parse_plugin_info("[Info('Sleepers', 'bob', 1.0)]")
        assert info.name == "Sleepers"
        assert info.author == "bob"
        assert info.version == "1.0"

    def test_junk_values_discarded(self):
        meta = extract_plugin_metadata('[Info("Warps", "null", "0")]', "Warps.cs", "alice")
        assert meta.name == "Warps"
        assert meta.author == "alice"
        assert meta.version is None


class TestFallbacks:
    """Test comment, class and file name fallbacks."""

    def test_comment_header(self):
        info = parse_plugin_info("/* Plugin: Cool Stuff, Author: Bob, Version: 1.2 */\nnamespace Oxide.Plugins {}")
        assert info.name == "Cool Stuff"
        assert info.author == "Bob"
        assert info.version == "1.2"
        assert info.source == "comment"

    def test_class_without_info_uses_owner(self):
        """class Foo : RustPlugin without an info block gives Foo by the repository owner."""
        source = b"namespace Oxide.Plugins\n{\n    public class Foo : RustPlugin\n    {\n    }\n}\n"
        meta = extract_plugin_metadata(source, "plugins/Other.cs", "alice")
        assert meta.name == "Foo"
        assert meta.author == "alice"
        assert meta.source == "class"

    def test_partial_covalence_class(self):
        info = parse_plugin_info("public partial class Bar : CovalencePlugin, IDisposable {}")
        assert info.name == "Bar"
        assert info.author is None

    def test_file_name_when_nothing_matches(self):
        meta = extract_plugin_metadata("using System;", "src/Helpers/NoInfo.cs", "alice")
        assert meta.name == "NoInfo"
        assert meta.author == "alice"
        assert meta.source == "filename"
        assert parse_plugin_info("using System;") is None

    def test_missing_content(self):
        meta = extract_plugin_metadata(None, "Kits.cs", "alice")
        assert (meta.name, meta.author) == ("Kits", "alice")

    def test_invalid_utf8_tolerated(self):
        meta = extract_plugin_metadata(b'\xff\xfe[Info("X", "Y", "1")]', "Z.cs", "alice")
        assert meta.name == "X"
        assert meta.author == "Y"


class TestHelpers:

    def test_description(self):
        assert parse_description(POSITIONAL_SOURCE) == "Allows to manage chat titles and colors"
        assert parse_description("class A {}") is None

    def test_is_oxide_plugin(self):
        assert is_oxide_plugin(POSITIONAL_SOURCE)
        assert not is_oxide_plugin("namespace Carbon.Plugins {}")

    def test_clean_value(self):
        assert clean_value("  Kits ") == "Kits"
        assert clean_value("undefined") is None
        assert clean_value(")") is None
        assert clean_value(None) is None
