"""
Prompt builder for essay grading.

Constructs the prompts sent to the model for:
- Semantic similarity between one scoring point and the answer
- Language quality ratings
- The holistic chain-of-thought critique
- Polishing and upgrading an answer

Only the structure of each reply is relied upon elsewhere; the wording
can be tuned freely.
"""

from typing import Sequence

from essay_grader.grading.llm_client import ChatMessage
from essay_grader.models import ScoringPoint

# Grading strictness by exam level. Levels are matched by substring.
EXAM_LEVEL_GUIDANCE: dict[str, str] = {
    "副省级": (
        "副省级试卷侧重宏观视野与政策理论高度：要求立意深刻、论证严密、对策具有全局性和前瞻性，"
        "仅罗列材料原话而缺乏提炼的作答应明显压分。"
    ),
    "地市级": (
        "地市级试卷侧重综合分析与解决实际问题的能力：要求要点全面、条理清晰、对策具体可行，"
        "对理论拔高的要求适中。"
    ),
    "乡镇": (
        "乡镇级试卷侧重基层治理与群众工作能力：要求贴近基层实际、表述朴实准确、措施接地气，"
        "不宜因理论高度不足而过度扣分。"
    ),
    "行政执法": (
        "行政执法类试卷侧重依法行政意识：要求准确把握法律依据、执法程序与权责边界，"
        "出现违背法治原则的表述应严格扣分。"
    ),
}

GENERAL_GUIDANCE = (
    "按照公务员考试申论通用标准阅卷：以采分点为核心，兼顾作答的准确性、全面性、条理性和规范性，"
    "宁缺毋滥，不因篇幅长短本身给分。"
)

BIG_ESSAY_SCORE = 40


class PromptBuilder:
    """
    Builds the model prompts used by the grading pipeline.

    The holistic prompt walks the model through a fixed reasoning order:
    reconstruct the answer's logic, compare it with the ideal logic chain,
    check each scoring point with evidence, then score four dimensions.
    """

    FEEDBACK_SYSTEM_PROMPT = """你是一位拥有20年经验的申论阅卷组长，阅卷严谨、客观、公正。

阅卷纪律：
1. 严格依据评分标准与标准采分点给分，不臆测考生意图，不因字迹、篇幅或态度加分。
2. 每个采分点的判定都必须给出考生原文作为证据；未命中的采分点证据留空。
3. 相同的作答必须得到相同的评价。
4. 只输出 JSON，不要在 JSON 前后添加任何文字。"""

    @staticmethod
    def build_similarity_messages(point_content: str, answer: str) -> list[ChatMessage]:
        """Ask for a single similarity number between 0 and 1."""
        prompt = f"""请分析以下两段文本的语义相似度，返回 0 到 1 之间的数字（保留 2 位小数）。
只返回数字，不要其他任何文字。

【文本1：采分点】
{point_content}

【文本2：考生作答】
{answer}"""
        return [{"role": "user", "content": prompt}]

    @staticmethod
    def build_language_messages(answer: str, question_type: str) -> list[ChatMessage]:
        """Ask for fluency, accuracy and professionalism ratings as JSON."""
        prompt = f"""你是一位申论批改专家。请分析以下{question_type}题型的作答，评估其语言质量。

【作答内容】
{answer}

请返回 JSON 格式：
{{
  "fluency": 0.85,
  "accuracy": 0.80,
  "professionalism": 0.75,
  "issues": ["问题1", "问题2"],
  "suggestions": ["建议1", "建议2"]
}}

评分标准（0-1）：
- fluency: 语言流畅度
- accuracy: 表述准确性
- professionalism: 专业术语与规范表述的使用

只返回 JSON，不要其他解释。"""
        return [{"role": "user", "content": prompt}]

    @staticmethod
    def build_feedback_messages(
        answer: str,
        question_title: str,
        reference_answer: str,
        question_type: str,
        scoring_points: Sequence[ScoringPoint],
        exam_level: str | None = None,
    ) -> list[ChatMessage]:
        """
        Build the holistic critique prompt.

        Args:
            answer: The candidate's answer.
            question_title: Prompt text of the question.
            reference_answer: Full reference answer.
            question_type: Question type tag.
            scoring_points: The rubric's scoring points (may be empty).
            exam_level: Exam level tag used to pick strictness guidance.

        Returns:
            System and user messages.
        """
        points_text = PromptBuilder._format_points(scoring_points)
        guidance = PromptBuilder.get_exam_level_guidance(exam_level)
        essay_text = (
            PromptBuilder._big_essay_instructions()
            if PromptBuilder.is_big_essay(scoring_points, question_type)
            else ""
        )

        prompt = f"""请采用"沉浸式阅卷"模式，对以下考生的{question_type}作答进行深度批改。
{essay_text}
【评分标准】
{guidance}

【题目】
{question_title}

【参考答案】
{reference_answer or "（未提供参考答案）"}

【标准采分点】
{points_text}

【考生作答】
---作答开始---
{answer}
---作答结束---

请按以下思维链批改：
1. 逻辑重构：梳理考生的行文逻辑，与参考答案的理想逻辑链对比，找出断层。
2. 精准采分：逐一核对每个标准采分点，判定 full（完全命中）、partial（部分命中）或 missed（未命中），
   给出考生原文证据和遗漏的关键词，earned 不得超过该采分点分值。
3. 综合定档：给出四个维度的得分，每个维度满分 25 分。

请返回严格的 JSON：
{{
  "analysis_thought": "阅卷思考过程（300字左右）",
  "dimensions": {{"understanding": 20, "logic": 18, "language": 22, "norm": 15}},
  "overall_comment": "给考生的最终评语",
  "strengths": ["亮点1", "亮点2"],
  "weaknesses": ["不足1", "不足2"],
  "suggestions": ["具体建议1", "具体建议2"],
  "scoring_details": [
    {{
      "point": "采分点内容",
      "score": 5,
      "earned": 3,
      "status": "partial",
      "evidence": "考生原文引用，未命中则留空",
      "missing_keywords": ["漏掉的关键词"]
    }}
  ],
  "logic_analysis": {{
    "user_logic_chain": ["考生第一步", "考生第二步"],
    "master_logic_chain": ["理想第一步", "理想第二步"],
    "gaps": ["逻辑断层"],
    "suggestions": ["弥补逻辑漏洞的建议"]
  }},
  "polished_with_marks": "在原文基础上润色：保留好的句子，需要修改处写作 ~~原句~~ **新句**",
  "polished_clean": "不带任何标注的完整润色版本",
  "sentence_upgrades": [
    {{"original": "考生原句", "upgraded": "升格后的表达", "reason": "修改原因"}}
  ]
}}

只返回 JSON，不要其他解释。"""

        return [
            {"role": "system", "content": PromptBuilder.FEEDBACK_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    @staticmethod
    def build_polish_messages(content: str, question_type: str) -> list[ChatMessage]:
        """Ask for a formal-register rewrite of an answer."""
        prompt = f"""你是一位申论写作专家。请将以下{question_type}答案润色为更规范的公文表达。

【原文】
{content}

要求：
1. 保持原意不变
2. 使用更专业、规范的表述
3. 优化语言的条理性和逻辑性

请直接返回润色后的文本，不要其他解释。"""
        return [{"role": "user", "content": prompt}]

    @staticmethod
    def build_upgrade_messages(
        answer: str, question_title: str, reference_answer: str
    ) -> list[ChatMessage]:
        """Ask for a high-scoring model essay built on the candidate's answer."""
        prompt = f"""你是一位申论写作专家。请基于考生答案，生成一篇可获得高分的升格范文。

【题目】
{question_title}

【参考答案】
{reference_answer}

【考生原答案】
{answer}

要求：
1. 保留考生答案中的合理要点
2. 补充遗漏的采分点
3. 优化语言表达和结构
4. 使用专业术语和规范表述

请直接返回升格后的范文，不要其他解释。"""
        return [{"role": "user", "content": prompt}]

    @staticmethod
    def get_exam_level_guidance(exam_level: str | None) -> str:
        """Strictness guidance for an exam level tag."""
        if exam_level:
            for level, guidance in EXAM_LEVEL_GUIDANCE.items():
                if level in exam_level:
                    return guidance
        return GENERAL_GUIDANCE

    @staticmethod
    def is_big_essay(scoring_points: Sequence[ScoringPoint], question_type: str) -> bool:
        total = sum(p.max_score for p in scoring_points)
        return total >= BIG_ESSAY_SCORE or "作文" in question_type

    @staticmethod
    def _format_points(scoring_points: Sequence[ScoringPoint]) -> str:
        if not scoring_points:
            return "未提供具体采分点，请根据参考答案自行概括采分点"
        return "\n".join(
            f"{i}. {p.content}（分值: {p.max_score:g}）"
            for i, p in enumerate(scoring_points, start=1)
        )

    @staticmethod
    def _big_essay_instructions() -> str:
        return """
【特别要求：大作文批改与润色】
1. polished_with_marks 必须在原文基础上"原位"润色，修改处使用 ~~原句~~ **新句** 格式，保留原段落结构。
2. 润色要去口语化、增强气势、提升政策理论高度、用词精准。
3. sentence_upgrades 至少提供 5 处关键语句的升格对比。
4. logic_analysis 重点分析文章的立意、结构布局和论证深度。
"""
