"""Tests for the command-line surface."""

import json

import pytest

from main import _needs_api_key, build_parser, cmd_digest, cmd_scan, cmd_sources, cmd_topics


def parse(*argv):
    return build_parser().parse_args(list(argv))


class TestParser:
    @pytest.mark.parametrize(
        "argv, needs_key",
        [
            (("run",), True),
            (("scan", "--type", "full"), False),
            (("scan", "--type", "full", "--wait"), True),
            (("scan", "--type", "cleanup", "--wait"), False),
            (("digest",), False),
            (("digest", "--wait"), True),
            (("status",), False),
            (("topics", "list"), False),
        ],
    )
    def test_api_key_only_needed_when_agents_run(self, argv, needs_key):
        assert _needs_api_key(parse(*argv)) is needs_key


class TestCommands:
    def test_sources_add_and_list(self, config, capsys):
        assert cmd_sources(parse("sources", "add", "--name", "Le Monde", "--slug", "lemonde",
                                 "--url", "https://www.lemonde.fr/rss/une.xml"), config) == 0
        assert cmd_sources(parse("sources", "add", "--name", "Dup", "--slug", "lemonde",
                                 "--url", "https://dup.fr/rss"), config) == 1
        capsys.readouterr()

        assert cmd_sources(parse("sources", "list"), config) == 0

        listed = json.loads(capsys.readouterr().out)
        assert [s["slug"] for s in listed] == ["lemonde"]

    def test_topics_add_splits_keywords(self, config, capsys):
        argv = ("topics", "add", "--name", "Bureaucratie", "--slug", "bureaucratie",
                "--keywords", "cerfa, formulaire,,", "--min-score", "0.6")

        assert cmd_topics(parse(*argv), config) == 0

        topic = json.loads(capsys.readouterr().out)
        assert topic["keywords"] == ["cerfa", "formulaire"]
        assert topic["min_relevance_score"] == 0.6

    def test_topics_add_without_keywords_fails(self, config, capsys):
        argv = ("topics", "add", "--name", "Vide", "--slug", "vide", "--keywords", " , ")

        assert cmd_topics(parse(*argv), config) == 1

    def test_targeted_scan_needs_source(self, config, capsys):
        assert cmd_scan(parse("scan", "--type", "targeted"), config) == 1

    def test_scan_enqueues_job(self, config, capsys):
        assert cmd_scan(parse("scan", "--type", "full"), config) == 0

        assert json.loads(capsys.readouterr().out)["type"] == "full"

    def test_digest_enqueues_keyed_job(self, config, capsys):
        assert cmd_digest(parse("digest", "--date", "2026-01-15"), config) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["job_key"] == "summary-2026-01-15"
        assert output["status"] == "waiting"
