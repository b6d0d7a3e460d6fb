# tests/test_organize_files.py

import json

import pytest

from organize_files import apply_moves, load_categories, main, plan_moves


@pytest.fixture
def ext_to_cat():
    return {".pdf": "Documents", ".jpg": "Images", ".zip": "Archives"}


def test_load_categories_shipped_file():
    mapping = load_categories()
    assert mapping[".pdf"] == "Documents"
    assert mapping[".msi"] == "Installers"


def test_load_categories_lowercases(tmp_path):
    f = tmp_path / "cats.json"
    f.write_text(json.dumps({"Docs": [".PDF"]}), encoding="utf-8")
    assert load_categories(f) == {".pdf": "Docs"}


def test_plan_moves_by_extension(tmp_path, ext_to_cat):
    for name in ("b.PDF", "a.jpg", "notes", "setup.xyz"):
        (tmp_path / name).write_text(name)
    (tmp_path / "Existing").mkdir()

    plan = plan_moves(tmp_path, ext_to_cat)
    assert [(s.name, d.relative_to(tmp_path).as_posix()) for s, d in plan] == [
        ("a.jpg", "Images/a.jpg"),
        ("b.PDF", "Documents/b.PDF"),
        ("notes", "Other/notes"),
        ("setup.xyz", "Other/setup.xyz"),
    ]


def test_plan_avoids_existing_names(tmp_path, ext_to_cat):
    (tmp_path / "Documents").mkdir()
    (tmp_path / "Documents" / "report.pdf").write_text("old")
    (tmp_path / "Documents" / "report (1).pdf").write_text("older")
    (tmp_path / "report.pdf").write_text("new")

    [(src, dest)] = plan_moves(tmp_path, ext_to_cat)
    assert dest.name == "report (2).pdf"


def test_apply_moves(tmp_path, ext_to_cat):
    (tmp_path / "a.zip").write_text("zip")
    plan = plan_moves(tmp_path, ext_to_cat)
    assert apply_moves(plan) == 1
    assert (tmp_path / "Archives" / "a.zip").read_text() == "zip"
    assert not (tmp_path / "a.zip").exists()


def test_apply_moves_dry_run(tmp_path, ext_to_cat):
    (tmp_path / "a.zip").write_text("zip")
    assert apply_moves(plan_moves(tmp_path, ext_to_cat), dry_run=True) == 1
    assert (tmp_path / "a.zip").exists()
    assert not (tmp_path / "Archives").exists()


def test_main_not_a_folder(tmp_path):
    assert main([str(tmp_path / "missing")]) == 1


def test_main_empty_folder(tmp_path, capsys):
    assert main([str(tmp_path)]) == 0
    assert "Nothing to organize." in capsys.readouterr().out


def test_main_moves_files(tmp_path):
    (tmp_path / "photo.jpg").write_text("jpg")
    (tmp_path / "doc.pdf").write_text("pdf")
    assert main([str(tmp_path)]) == 0
    assert (tmp_path / "Images" / "photo.jpg").exists()
    assert (tmp_path / "Documents" / "doc.pdf").exists()
