"""
Prompt templates for the generation model. All prompts are Japanese and end with a
JSON-only output instruction; news text is truncated to a fixed character budget.
"""
from typing import Iterable, List, Optional

from .models import DistrictPrediction
from .reference_data import ReferenceData, Region

JSON_ONLY = "JSONのみ出力。説明不要。"

NATIONAL_SUMMARY_SCHEMA = """  "nationalSummary": {
    "totalSeats": %(total_seats)d,
    "predictions": [
%(party_rows)s
    ]
  },"""

DISTRICT_SCHEMA = """{
  "districtNumber": %(number)d,
  "districtName": "%(name)s",
  "candidates": [
    {"name": "候補者名", "party": "政党名", "isIncumbent": true, "predictedVoteShare": 38},
    {"name": "候補者名", "party": "政党名", "isIncumbent": false, "predictedVoteShare": 35},
    {"name": "候補者名", "party": "政党名", "isIncumbent": false, "predictedVoteShare": 27}
  ],
  "leadingCandidate": "1位候補者名",
  "confidence": "medium"
}"""


def truncate(text: Optional[str], budget: int) -> str:
    return (text or "")[:budget]


def format_roster(reference: ReferenceData, regions: Iterable[Region], numbers: Optional[Iterable[int]] = None) -> str:
    """Roster as markdown: one heading per district, one bullet per candidate."""
    lines: List[str] = []
    wanted = set(numbers) if numbers is not None else None
    for region in regions:
        districts = reference.roster.get(region.id) or {}
        if not districts:
            continue
        lines.append(f"### {region.name}")
        for number in sorted(districts):
            if wanted is not None and number not in wanted:
                continue
            lines.append(f"#### {region.district_name(number)}")
            for c in districts[number]:
                lines.append(f"- {c.name}（{c.party}、{c.status}）")
        lines.append("")
    return "\n".join(lines).strip()


def roster_section(reference: ReferenceData, region: Optional[Region]) -> str:
    regions = [region] if region is not None else reference.major_regions
    roster = format_roster(reference, regions)
    if not roster:
        return ""
    return f"## 候補者データ（{reference.election_name} 投票日: {reference.election_date}）\n{roster}"


def _party_rows(reference: ReferenceData) -> str:
    rows = [
        f'      {{"party": "{name}", "seatRange": [最小, 最大], "change": 前回比}}'
        for name in reference.party_names
        if name != "無所属"
    ]
    return ",\n".join(rows)


def _summary_schema(reference: ReferenceData) -> str:
    return NATIONAL_SUMMARY_SCHEMA % {"total_seats": reference.total_seats, "party_rows": _party_rows(reference)}


def prediction_prompt(
    reference: ReferenceData,
    news_text: str,
    roster_text: str,
    region: Optional[Region],
    budget: int,
) -> str:
    scope = f"{region.name}（{region.district_count}区）を中心に" if region else "全国の"
    example_region = region or (reference.major_regions or list(reference.regions))[0]
    region_schema = (
        '    {\n'
        f'      "regionId": {example_region.id},\n'
        f'      "regionName": "{example_region.name}",\n'
        '      "leadingParty": "優勢な政党",\n'
        '      "confidence": "high/medium/low",\n'
        '      "seatPrediction": [{"party": "政党名", "seats": 数}],\n'
        '      "districts": [\n'
        + "\n".join("        " + line for line in (DISTRICT_SCHEMA % {
            "number": 1, "name": example_region.district_name(1)}).splitlines())
        + '\n      ]\n    }'
    )
    return f"""あなたは日本の選挙分析の専門家です。{reference.election_date}投票の{reference.election_name}について、以下の候補者データとニュースデータを分析し、{scope}予測を作成してください。

{roster_text}

## 収集されたニュース・世論調査データ
{truncate(news_text, budget)}

## 分析タスク
1. 各政党の支持率トレンドを分析
2. 選挙区ごとの情勢と主要候補者を特定
3. 接戦区を特定
4. 最終的な議席予測を作成

## 出力形式（必ずこのJSON形式で出力）
{{
{_summary_schema(reference)}
  "regionPredictions": [
{region_schema}
  ],
  "keyBattlegrounds": ["注目選挙区1", "注目選挙区2", "注目選挙区3", "注目選挙区4", "注目選挙区5"]
}}

重要:
- 候補者データに記載されている実際の候補者名・政党名を必ず使用してください
- isIncumbent: 候補者データのstatusが「前職」ならtrue、「新人」「元職」ならfalse
- predictedVoteShare: 予測得票率（%）、候補者全員の合計が100%になるように
- seatPredictionの合計は各都道府県の選挙区数と一致させてください
- 確信度: high=優勢明確, medium=接戦, low=予測困難
- {JSON_ONLY}"""


def fast_region_prompt(reference: ReferenceData, news_text: str, roster_text: str, region: Region, budget: int) -> str:
    return f"""## タスク
{region.name}の{reference.election_name}（{reference.election_date}）の予測を作成してください。
選挙区数: {region.district_count}区

## 収集されたニュース・調査データ
{truncate(news_text, budget)}

{roster_text}

## 出力形式
以下のJSON形式で出力。seatPredictionの合計は必ず{region.district_count}になるよう調整。
leadingParty: ニュースデータから判断した優勢政党
confidence: high（優勢明確）/ medium（接戦）/ low（予測困難）

{{"regionPredictions":[{{"regionId":{region.id},"regionName":"{region.name}","leadingParty":"政党名","confidence":"medium","seatPrediction":[{{"party":"政党名","seats":数値}}]}}],"keyBattlegrounds":["{region.district_name(1)}"]}}

{JSON_ONLY}"""


def fast_national_prompt(reference: ReferenceData, news_text: str, budget: int) -> str:
    return f"""## タスク
{reference.election_name}（{reference.election_date}）の全国の議席予測を作成してください。
総議席数: {reference.total_seats}

## 収集されたニュース・調査データ
{truncate(news_text, budget)}

## 出力形式
{{
{_summary_schema(reference)}
  "keyBattlegrounds": ["注目選挙区1", "注目選挙区2", "注目選挙区3"]
}}

{JSON_ONLY}"""


def districts_prompt(reference: ReferenceData, region: Region, news_text: str, budget: int) -> str:
    roster = format_roster(reference, [region])
    example = DISTRICT_SCHEMA % {"number": 1, "name": region.district_name(1)}
    return f"""## タスク
{region.name}の{reference.election_name}の候補者別得票率を予測してください。
選挙区数: {region.district_count}区

## 重要な指示
- 各候補者の得票率(predictedVoteShare)は、現職・知名度・政党支持率などを考慮して現実的に予測
- 全候補者で100%になるように配分
- 接戦区は差を小さく、優勢な候補がいる場合は差を大きく
- **得票率を候補者ごとに変えること（全員同じ数値は不可）**

## 候補者データ
{roster}

## 参考: 最新ニュース
{truncate(news_text, budget)}

## 出力形式
以下のJSON配列を正確に出力。候補者名は上記データから正確に使用すること。
[
{example}
  // ... {region.district_count}区まで全て出力
]

{JSON_ONLY}"""


def batch_prompt(reference: ReferenceData, region: Region, numbers: List[int], news_text: str, budget: int) -> str:
    roster = format_roster(reference, [region], numbers)
    listed = ", ".join(str(n) for n in numbers)
    first, last = numbers[0], numbers[-1]
    return f"""## タスク
{region.name}の{reference.election_name}（{reference.election_date}）の予測を作成してください。
対象選挙区: {listed}区のみ

## 候補者データ（必ずこの候補者名を使用）
{roster}

## ニュースデータ
{truncate(news_text, budget)}

## 出力形式
以下のJSON配列形式で出力。必ず{len(numbers)}区分（{listed}区）を出力すること。
候補者名は上記の候補者データから正確に引用すること。
[
  {{"districtNumber": {first}, "districtName": "{region.district_name(first)}", "candidates": [{{"name": "上記データの候補者名", "party": "政党名", "isIncumbent": true, "predictedVoteShare": 数値}}], "leadingCandidate": "1位候補者名", "confidence": "medium"}},
  ...（{last}区まで同様の形式で）
]

{JSON_ONLY}"""


def district_summary(districts: Iterable[DistrictPrediction], close_gap: float = 5.0) -> str:
    lines = []
    for d in districts:
        leader = d.candidates[0] if d.candidates else None
        line = f"{d.district_number}区: {d.leading_candidate}({leader.party if leader else '不明'})優勢"
        if leader and len(d.candidates) > 1:
            second = d.candidates[1]
            if leader.share - second.share <= close_gap:
                line += f"（{second.name}と接戦）"
        lines.append(line)
    return "\n".join(lines)


def commentary_prompt(reference: ReferenceData, region: Region, districts: List[DistrictPrediction], news_text: str, budget: int) -> str:
    return f"""## タスク
{region.name}の{reference.election_name}の情勢を100文字程度で簡潔に分析してください。

## 選挙区別の優勢状況
{district_summary(districts)}

## 参考ニュース
{truncate(news_text, budget)}

## 出力形式
- 100文字程度の日本語コメント
- 主要な対決構図、注目ポイントを含める
- 具体的な候補者名を1-2名挙げる
- JSONや説明文は不要、コメントのみ出力"""
