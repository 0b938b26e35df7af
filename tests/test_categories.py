import re

from reportbot.categories import (
    CATEGORIES, MP, MP_HELP, PUNISHMENTS, RAIDS, SUPPLIES, TWO_STAGE_CATEGORIES,
    folder_path, all_folder_paths, normalize_base_path, stage_file_name, single_file_name, get_category
)

WEEK = "30.12.24 – 05.01.25"


def test_two_stage_categories():
    assert set(TWO_STAGE_CATEGORIES) == {MP, RAIDS, SUPPLIES}
    assert not PUNISHMENTS.two_stage and not MP_HELP.two_stage


def test_night_folder_only_where_defined():
    assert RAIDS.folder_name(night=True) == "Ночные налеты, захваты"
    assert RAIDS.folder_name(night=False) == "Налёты, захваты"
    assert MP.folder_name(night=True) == MP.folder_name(night=False) == "МП"


def test_folder_path_layout():
    key = folder_path("/RMRPreport", WEEK, SUPPLIES, night=True)
    assert key.path == f"/RMRPreport/{WEEK}/Ночные поставки, ограбления (Краз, Air)"
    assert key.file_path("3-1.jpg") == f"{key.path}/3-1.jpg"
    assert str(key) == key.path


def test_folder_keys_compare_by_path():
    day = folder_path("/Base", WEEK, MP, night=False)
    night = folder_path("/Base/", WEEK, MP, night=True)
    assert day == night
    assert len({day, night}) == 1


def test_all_folder_paths_are_unique():
    folders = all_folder_paths("/Base", WEEK)
    paths = [f.path for f in folders]
    # 5 day folders + 3 distinct night folders.
    assert len(paths) == 8
    assert len(set(paths)) == 8
    assert all(p.startswith(f"/Base/{WEEK}/") for p in paths)


def test_normalize_base_path():
    assert normalize_base_path("Reports/") == "/Reports"
    assert normalize_base_path("  /Telegram/Photos ") == "/Telegram/Photos"
    assert normalize_base_path("/") == "/"


def test_stage_file_name_has_no_leading_zeros():
    assert stage_file_name(7, 1) == "7-1.jpg"
    assert stage_file_name(12, 2, "png") == "12-2.png"


def test_single_file_name_uses_prefix():
    name = single_file_name(PUNISHMENTS, ".png")
    assert re.match(r"^punishment_\d+_[a-z0-9]{6}\.png$", name)


def test_get_category():
    assert get_category("mp") is MP
    assert get_category("events") is None
    assert set(CATEGORIES) == {"punishments", "mp", "mp_help", "raids", "supplies"}
