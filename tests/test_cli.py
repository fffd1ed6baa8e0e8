import json

import pytest

import medrag.cli as cli_mod
from medrag.errors import EmptyIngestionError
from medrag.rag.ingest import STATUS_STORED, IngestionReport


@pytest.fixture
def config_path(tmp_path):
    tracking = tmp_path / "tracking.json"
    path = tmp_path / "rag_config.yml"
    path.write_text(
        f"""
ingestion:
  tracking_file: {tracking}
topics:
  menopause:
    collection: menopause_knowledge
    label: menopause
    sources_file: config/sources/menopause.yml
    keywords: [menopause]
  breast_cancer:
    collection: breast_cancer_knowledge
    label: breast cancer
    sources_file: config/sources/breast_cancer.yml
    keywords: [breast]
""",
        encoding="utf-8",
    )
    return path


def _seed(tmp_path):
    (tmp_path / "tracking.json").write_text(
        json.dumps(
            {
                "lastScraped": {
                    "menopause_knowledge": {"timestamp": "2025-11-10T12:00:00+00:00", "urlCount": 2, "documentCount": 31}
                },
                "scrapedUrls": {
                    "menopause_knowledge": ["https://a.example", "https://b.example"],
                    "breast_cancer_knowledge": ["https://c.example"],
                },
            }
        ),
        encoding="utf-8",
    )


def test_status(config_path, tmp_path, capsys):
    _seed(tmp_path)
    assert cli_mod.scrape_main(["--status", "--config", str(config_path)]) == 0
    out = capsys.readouterr().out
    assert "menopause_knowledge:" in out
    assert "URLs scraped: 2" in out
    assert "Documents stored: 31" in out
    assert "Last scraped: Never" in out


def test_reset_single_topic(config_path, tmp_path):
    _seed(tmp_path)
    assert cli_mod.scrape_main(["--reset", "breast-cancer", "--config", str(config_path)]) == 0
    data = json.loads((tmp_path / "tracking.json").read_text(encoding="utf-8"))
    assert "breast_cancer_knowledge" not in data["scrapedUrls"]
    assert data["scrapedUrls"]["menopause_knowledge"] == ["https://a.example", "https://b.example"]


def test_reset_all(config_path, tmp_path):
    _seed(tmp_path)
    assert cli_mod.scrape_main(["--config", str(config_path), "--reset"]) == 0
    data = json.loads((tmp_path / "tracking.json").read_text(encoding="utf-8"))
    assert data == {"lastScraped": {}, "scrapedUrls": {}}


def test_no_topic_prints_help(config_path, capsys):
    assert cli_mod.scrape_main(["--config", str(config_path)]) == 0
    assert "usage:" in capsys.readouterr().out


def test_unknown_topic_fails(config_path, monkeypatch):
    monkeypatch.setattr(cli_mod, "build_pipeline", lambda *a, **kw: pytest.fail("should not build"))
    assert cli_mod.scrape_main(["osteoporosis", "--config", str(config_path)]) == 1


class DummyPipeline:
    def __init__(self, error=None):
        self.error = error
        self.runs = []

    def run(self, topic, sources, *, force=False):
        self.runs.append((topic.name, len(sources), force))
        if self.error is not None:
            raise self.error
        return IngestionReport(
            collection=topic.collection,
            status=STATUS_STORED,
            sources_attempted=len(sources),
            chunks_stored=5,
            batches_written=1,
            by_organization={"ACOG": 5},
        )


def test_all_runs_topics_in_order(config_path, monkeypatch, capsys):
    pipeline = DummyPipeline()
    captured = {}

    def fake_build(cfg, tracker, delay_s=None):
        captured["delay"] = delay_s
        return pipeline

    monkeypatch.setattr(cli_mod, "build_pipeline", fake_build)
    assert cli_mod.scrape_main(["all", "--force", "--delay", "0", "--config", str(config_path)]) == 0

    assert pipeline.runs == [("menopause", 7, True), ("breast_cancer", 10, True)]
    assert captured["delay"] == 0
    assert "ACOG: 5 chunks" in capsys.readouterr().out


def test_empty_ingestion_exits_non_zero(config_path, monkeypatch, capsys):
    pipeline = DummyPipeline(error=EmptyIngestionError("No valid documents to store for menopause_knowledge"))
    monkeypatch.setattr(cli_mod, "build_pipeline", lambda *a, **kw: pipeline)

    assert cli_mod.scrape_main(["menopause", "--config", str(config_path)]) == 1
    assert "No valid documents to store" in capsys.readouterr().out
