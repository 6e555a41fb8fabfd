from __future__ import annotations

import logging
from typing import Iterator

import pytest

import artmerge.app_logging as al


def layout_xml(
    *,
    element: str = "bezel",
    file: str = "bezel.png",
    view: str = "Bezel",
    extra_elements: str = "",
    extra_views: str = "",
) -> str:
    """A small but realistic layout: one element, one view referencing it."""
    return f'''<?xml version="1.0"?>
<mamelayout version="2">
  <element name="{element}">
    <image file="{file}" />
  </element>
{extra_elements}
  <view name="{view}">
    <element ref="{element}">
      <bounds x="0" y="0" width="4" height="3" />
    </element>
  </view>
{extra_views}
</mamelayout>
'''


@pytest.fixture(autouse=True)
def _detach_log_sinks() -> Iterator[None]:
    """Make sure no test leaves file handlers attached to the package logger."""
    yield
    al.shutdown_app_logging()
    logging.getLogger("artmerge").setLevel(logging.NOTSET)
