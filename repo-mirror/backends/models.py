"""Backend models for search queries, match records and the rg line protocol."""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class SearchQuery(BaseModel):
    """A single search request against a checkout directory."""

    model_config = ConfigDict(frozen=True)

    pattern: str
    directory: str
    glob: Optional[str] = None
    max_per_file: Optional[int] = Field(default=None, ge=1)


class MatchRecord(BaseModel):
    """One matching line reported by the search tool."""

    model_config = ConfigDict(frozen=True)

    path: str
    line_number: int
    line: str

    def __str__(self) -> str:
        return f"{self.path}:{self.line_number}:{self.line}"


# rg --json emits one of these objects per line. Only "match" carries the
# fields we keep; the other tags delimit match regions.


class RgText(BaseModel):
    text: str


class RgMatchData(BaseModel):
    path: RgText
    line_number: int
    lines: RgText


class RgMatchLine(BaseModel):
    type: Literal["match"]
    data: RgMatchData


class RgOtherLine(BaseModel):
    type: Literal["begin", "end", "context", "summary"]


RgJsonLine = Annotated[Union[RgMatchLine, RgOtherLine], Field(discriminator="type")]

rg_json_line_adapter: TypeAdapter = TypeAdapter(RgJsonLine)
