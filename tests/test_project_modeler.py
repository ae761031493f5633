import json

from kairo.execution.project_modeler import HEURISTIC_NOTE, ProjectModeler
from kairo.llm.client import CompletionError


CLASSIFICATION = {
    "projectType": "web-app",
    "framework": "flask",
    "languages": ["Python"],
    "mainAreas": ["src"],
    "keyFiles": ["src/app.py"],
    "notes": "small demo",
}


def test_summary_is_generated_once_and_then_served_from_cache(project, scripted_client):
    client = scripted_client([CLASSIFICATION])
    modeler = ProjectModeler(client)

    first = modeler.summarize(project, "add a contact form")
    second = modeler.summarize(project, "something else entirely")

    assert len(client.calls) == 1
    assert first == second
    assert first["framework"] == "flask"
    assert first["source"] == "completion"

    cached = json.loads(ProjectModeler.summary_path(project).read_text())
    assert set(cached) == {"meta", "request_sample", "structure", "summary"}
    assert cached["summary"] == first
    assert cached["request_sample"] == "add a contact form"


def test_digest_reports_structure(project):
    (project / "node_modules").mkdir()
    (project / "node_modules" / "junk.js").write_text("x")
    digest = ProjectModeler(None).build_digest(project)
    assert digest["top_level"] == ["README.md", "requirements.txt", "src/"]
    assert digest["file_count"] == 3
    assert digest["extensions"] == {".md": 1, ".txt": 1, ".py": 1}
    assert "requirements.txt" in digest["manifests"]


def test_completion_failure_falls_back_to_heuristic(project, scripted_client):
    client = scripted_client([CompletionError("service down", retryable=True)])
    summary = ProjectModeler(client).summarize(project)

    assert summary["projectType"] == "unknown"
    assert summary["framework"] == "unknown"
    assert summary["languages"] == ["Python"]
    assert "src" in summary["mainAreas"]
    assert "requirements.txt" in summary["keyFiles"]
    assert summary["notes"] == HEURISTIC_NOTE
    assert ProjectModeler.summary_path(project).exists()


def test_unparseable_classification_falls_back(project, scripted_client):
    summary = ProjectModeler(scripted_client(["I think this is a Flask app."])).summarize(project)
    assert summary["source"] == "heuristic"


def test_unexpected_client_errors_never_escape(project, scripted_client):
    summary = ProjectModeler(scripted_client([RuntimeError("socket closed")])).summarize(project)
    assert summary["source"] == "heuristic"


def test_partial_classification_is_filled_from_heuristics(project, scripted_client):
    summary = ProjectModeler(scripted_client([{"projectType": "cli"}])).summarize(project)
    assert summary["projectType"] == "cli"
    assert summary["framework"] == "unknown"
    assert summary["languages"] == ["Python"]


def test_custom_store_dir_holds_the_cache(project, tmp_path):
    store_dir = tmp_path / "summaries"
    modeler = ProjectModeler(None, store_dir=store_dir)
    first = modeler.summarize(project)

    assert (store_dir / "project_summary.json").exists()
    assert not ProjectModeler.summary_path(project).exists()
    assert modeler.summarize(project) == first
