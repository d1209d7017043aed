"""Prompt templates and the expected LLM output schema for minutes generation."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from src.models import Priority

Language = Literal["ja", "en"]

SYSTEM_PROMPT_JA = """あなたは議事録作成の専門家です。
会議の文字起こしから、構造化された高品質な議事録を作成することが得意です。

あなたの役割:
- 会議の内容を正確に把握し、重要な情報を漏らさず抽出する
- 話題の流れを理解し、論理的にセグメント分けする
- 決定事項とアクションアイテムを明確に識別する
- 簡潔で読みやすい文章で要約する

出力形式:
- 必ずJSON形式で出力してください
- マークダウンやコードブロックは使用しないでください
- 指定されたスキーマに厳密に従ってください"""

SYSTEM_PROMPT_EN = """You are an expert meeting minutes writer.
You turn meeting transcripts into structured, high-quality minutes.

Your role:
- Understand the meeting accurately and extract every important point
- Follow the flow of discussion and segment it into topics
- Identify decisions and action items clearly
- Summarize in concise, readable prose

Output format:
- Always answer with JSON
- Do not use markdown or code blocks
- Follow the given schema exactly"""

USER_PROMPT_JA = """以下の会議の文字起こしから、構造化された議事録を作成してください。

## 出力要件

### 1. 全体要約 (summary)
- 3-5文で会議全体の要点を簡潔にまとめてください
- 会議の目的、主な議論点、結論を含めてください

### 2. 話題セグメント (topics)
- 議論の流れに沿って話題を分割してください
- 各話題には title, start_time, end_time (ミリ秒、推定で可), summary,
  key_points (配列), speakers (参加者リストから選択) を含めてください

### 3. 決定事項 (decisions)
- 「決定」「承認」「合意」「決まった」「採用」等のキーワードから抽出
- 各決定事項には content, context, decided_at (ミリ秒、推定で可) を含めてください
- 明確な決定がない場合は空配列で構いません

### 4. アクションアイテム (action_items)
- 「やる」「対応する」「確認する」「作成する」等のキーワードから抽出
- 各アクションアイテムには content, assignee (検出できた場合),
  due_date (YYYY-MM-DD、検出できた場合), priority ("high" / "medium" / "low") を含めてください
- 明確なアクションがない場合は空配列で構いません

## 会議情報
タイトル: {meeting_title}
日付: {meeting_date}
参加者: {attendees}

## 文字起こし
{transcript}

## 重要な注意事項
- IDフィールド（id）は含めないでください（サーバー側で生成します）
- 発言者情報は name (と分かれば lark_user_id) のみで構いません
- 時間は推定値で構いません（0から始まるミリ秒単位）"""

USER_PROMPT_EN = """Create structured meeting minutes from the following transcript.

## Output Requirements

### 1. Overall summary (summary)
- Summarize the whole meeting in 3-5 sentences
- Include the purpose, the main discussion points and the conclusions

### 2. Topic segments (topics)
- Split the discussion into topics in the order they were discussed
- Each topic has title, start_time, end_time (milliseconds, estimates are fine),
  summary, key_points (array) and speakers (chosen from the attendee list)

### 3. Decisions (decisions)
- Extract from phrases like "decided", "approved", "agreed", "adopted"
- Each decision has content, context and decided_at (milliseconds, estimate)
- Use an empty array when there are no clear decisions

### 4. Action items (action_items)
- Extract from phrases like "will do", "handle", "check", "create"
- Each action item has content, assignee (if detected), due_date
  (YYYY-MM-DD, if detected) and priority ("high" / "medium" / "low")
- Use an empty array when there are no clear actions

## Meeting Information
Title: {meeting_title}
Date: {meeting_date}
Attendees: {attendees}

## Transcript
{transcript}

## Notes
- Do not include id fields; they are generated server-side
- Speakers only need name (and lark_user_id when known)
- Times are estimates in milliseconds starting from 0"""

JSON_INSTRUCTION = """You must respond with valid JSON only. No markdown, no code blocks, no explanations.
Your response must conform to this schema:
{schema}
Respond with the JSON object directly."""

OUTPUT_SCHEMA_DESCRIPTION = """{
  "summary": string,
  "topics": Array<{"title": string, "start_time": number, "end_time": number,
                   "summary": string, "key_points": Array<string>,
                   "speakers": Array<{"name": string, "lark_user_id": string (optional)}> (optional)}>,
  "decisions": Array<{"content": string, "context": string, "decided_at": number}>,
  "action_items": Array<{"content": string,
                         "assignee": {"name": string, "lark_user_id": string (optional)} (optional),
                         "due_date": string (optional), "priority": "high" | "medium" | "low"}>,
  "attendees": Array<{"name": string, "lark_user_id": string (optional)}> (optional)
}"""


def get_system_prompt(language: Language = "ja") -> str:
    base = SYSTEM_PROMPT_JA if language == "ja" else SYSTEM_PROMPT_EN
    return f"{base}\n\n{JSON_INSTRUCTION.format(schema=OUTPUT_SCHEMA_DESCRIPTION)}"


def build_minutes_prompt(
    transcript: str,
    meeting_title: str,
    meeting_date: str,
    attendees: list[str],
    language: Language = "ja",
) -> str:
    if not transcript.strip():
        raise ValueError("Transcript is required and cannot be empty")
    if not meeting_title.strip():
        raise ValueError("Meeting title is required and cannot be empty")
    if not meeting_date.strip():
        raise ValueError("Meeting date is required and cannot be empty")

    template = USER_PROMPT_JA if language == "ja" else USER_PROMPT_EN
    # str.format would choke on braces inside the transcript itself.
    return (
        template.replace("{meeting_title}", meeting_title)
        .replace("{meeting_date}", meeting_date)
        .replace("{attendees}", ", ".join(attendees) if attendees else "(Not specified)")
        .replace("{transcript}", transcript)
    )


# --- Expected model output ---


class OutputSpeaker(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    lark_user_id: str | None = None


class OutputTopic(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    start_time: int = Field(ge=0)
    end_time: int = Field(ge=0)
    summary: str
    key_points: list[str]
    speakers: list[OutputSpeaker] = Field(default_factory=list)


class OutputDecision(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str = Field(min_length=1)
    context: str
    decided_at: int = Field(ge=0)


class OutputActionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str = Field(min_length=1)
    assignee: OutputSpeaker | None = None
    due_date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    priority: Priority


class MinutesOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str
    topics: list[OutputTopic]
    decisions: list[OutputDecision]
    action_items: list[OutputActionItem]
    attendees: list[OutputSpeaker] = Field(default_factory=list)
