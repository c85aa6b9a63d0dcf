# backend/tests/test_dialogue_policy.py
"""
Dialogue policies (rule-based and generative) and post-call classification.
"""
import pytest

from callflow.agents.dialogue_policy import (
    FALLBACK_REPLY,
    PROBING_REPLY,
    RULES,
    GenerativePolicy,
    RuleBasedPolicy,
    build_dialogue_policy,
    clean_reply,
    match_category,
)
from callflow.models.call import CallContext, CallOutcome, Turn, TurnRole
from callflow.services.exceptions import ConfigurationError, ProviderError
from callflow.services.transcript_classifier import (
    TranscriptClassifier,
    format_transcript,
    parse_outcome,
)


def _reply_for(category: str) -> str:
    return next(reply for name, _, reply in RULES if name == category)


@pytest.fixture
def context() -> CallContext:
    script = "Hi, I'm calling Joe's Pizza in Austin."
    return CallContext(
        company_name="Joe's Pizza",
        category="Restaurant",
        address="12 Main St, Austin",
        script=script,
        transcript=[Turn(TurnRole.AGENT, script)],
    )


# ============================================================================
# 1. RULE-BASED POLICY
# ============================================================================

class TestRuleBasedPolicy:

    @pytest.mark.parametrize("utterance,category", [
        ("Hello?", "greeting"),
        ("hey who is this", "greeting"),
        ("Yeah, sure", "affirmative"),
        ("We're not interested", "negative"),
        ("no thanks", "negative"),
        ("No, not interested", "negative"),
        ("nope", "negative"),
        ("Yes, no problem", "affirmative"),
        ("sure, no worries", "affirmative"),
        ("How much does it cost?", "price"),
        ("Can you call back tomorrow", "scheduling"),
        ("Goodbye", "farewell"),
    ])
    def test_categories(self, utterance, category):
        assert match_category(utterance) == category

    def test_keywords_match_whole_words_only(self):
        # "this", "know", "nothing" must not trigger hi / no
        assert match_category("this is nothing I know about") is None

    @pytest.mark.asyncio
    async def test_reply_for_category(self, context):
        policy = RuleBasedPolicy()
        assert await policy.next_turn("how much is it", context) == _reply_for("price")

    @pytest.mark.asyncio
    async def test_no_match_probes(self, context):
        assert await RuleBasedPolicy().next_turn("the weather is odd", context) == PROBING_REPLY

    @pytest.mark.asyncio
    @pytest.mark.parametrize("utterance", [None, "", "   "])
    async def test_empty_input_never_raises(self, context, utterance):
        assert await RuleBasedPolicy().next_turn(utterance, context) == PROBING_REPLY

    @pytest.mark.asyncio
    async def test_deterministic(self, context):
        policy = RuleBasedPolicy()
        assert await policy.next_turn("yes", context) == await policy.next_turn("yes", context)


# ============================================================================
# 2. GENERATIVE POLICY
# ============================================================================

class TestGenerativePolicy:

    @pytest.mark.asyncio
    async def test_first_sentence_only(self, context, fake_llm):
        fake_llm.reply = "Agent: That's great to hear! Could we book a quick call Thursday? I'll send details."
        reply = await GenerativePolicy(llm=fake_llm).next_turn("sure, tell me more", context)
        assert reply == "That's great to hear!"

    @pytest.mark.asyncio
    async def test_prompt_carries_business_and_transcript(self, context, fake_llm):
        fake_llm.reply = "Great."
        await GenerativePolicy(llm=fake_llm).next_turn("who is this?", context)
        prompt = fake_llm.prompts[-1]
        assert "Joe's Pizza" in prompt
        assert "Restaurant" in prompt
        assert context.script in prompt
        assert "who is this?" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ProviderError("OpenAI completion timed out after 8.0s", provider="openai"),
        ConfigurationError("OPENAI_API_KEY is required"),
    ])
    async def test_provider_failure_falls_back(self, context, fake_llm, error):
        fake_llm.error = error
        assert await GenerativePolicy(llm=fake_llm).next_turn("hello", context) == FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_empty_output_falls_back(self, context, fake_llm):
        fake_llm.reply = '  ""  '
        assert await GenerativePolicy(llm=fake_llm).next_turn("hello", context) == FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_empty_utterance_skips_model(self, context, fake_llm):
        assert await GenerativePolicy(llm=fake_llm).next_turn("", context) == FALLBACK_REPLY
        assert fake_llm.prompts == []

    def test_clean_reply(self):
        assert clean_reply('"Sounds good. Talk soon."') == "Sounds good."
        assert clean_reply("Caller: Perfect!") == "Perfect!"
        assert clean_reply("") == ""


class TestPolicySelection:

    def test_explicit_rules(self):
        assert isinstance(build_dialogue_policy("rules"), RuleBasedPolicy)

    def test_explicit_generative(self, fake_llm):
        policy = build_dialogue_policy("generative", llm=fake_llm)
        assert isinstance(policy, GenerativePolicy)
        assert policy.llm is fake_llm

    def test_defaults_to_rules_without_openai_key(self):
        assert isinstance(build_dialogue_policy(), RuleBasedPolicy)


# ============================================================================
# 3. TRANSCRIPT CLASSIFIER
# ============================================================================

class TestTranscriptClassifier:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("turns", [0, 1])
    async def test_short_transcript_not_classified(self, fake_llm, turns):
        transcript = [Turn(TurnRole.AGENT, "Hi!")][:turns]
        assert await TranscriptClassifier(llm=fake_llm).classify("Acme", transcript) is None
        assert fake_llm.prompts == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer,expected", [
        ("interested", CallOutcome.INTERESTED),
        ("Interested.", CallOutcome.INTERESTED),
        ("NOT_INTERESTED\n", CallOutcome.NOT_INTERESTED),
        ("unreachable", CallOutcome.UNREACHABLE),
        ("maybe", CallOutcome.UNREACHABLE),
        ("", CallOutcome.UNREACHABLE),
    ])
    async def test_answer_coercion(self, fake_llm, answer, expected):
        fake_llm.reply = answer
        transcript = [Turn(TurnRole.AGENT, "Hi!"), Turn(TurnRole.COUNTERPARTY, "Sure, tell me more")]
        assert await TranscriptClassifier(llm=fake_llm).classify("Acme", transcript) == expected

    @pytest.mark.asyncio
    async def test_provider_failure_is_unreachable(self, fake_llm):
        fake_llm.error = ProviderError("boom", provider="openai")
        transcript = [Turn(TurnRole.AGENT, "Hi!"), Turn(TurnRole.COUNTERPARTY, "yes")]
        assert await TranscriptClassifier(llm=fake_llm).classify("Acme", transcript) == CallOutcome.UNREACHABLE

    def test_parse_outcome(self):
        assert parse_outcome("not interested") == CallOutcome.UNREACHABLE
        assert parse_outcome(None) == CallOutcome.UNREACHABLE

    def test_format_transcript_labels(self):
        text = format_transcript("Acme", [Turn(TurnRole.AGENT, "Hi!"), Turn(TurnRole.COUNTERPARTY, "Hello")])
        assert text == "AI Caller: Hi!\nAcme: Hello"
