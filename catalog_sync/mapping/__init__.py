"""Mapping helpers."""

from __future__ import annotations

import pathlib

import yaml

from catalog_sync.mapping.categories import Category

CATEGORIES_PATH = pathlib.Path(__file__).with_name("categories.yml")


def load_categories(path: pathlib.Path = CATEGORIES_PATH) -> list[Category]:
    data = yaml.safe_load(path.read_text()) or []
    return [Category(**item) for item in data]
