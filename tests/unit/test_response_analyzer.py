from agents.response_analyzer import (
    analysis_confidence,
    analyze_response,
    classify_emotional_state,
    extract_key_topics,
    identify_information_gaps,
    score_completeness,
    score_technical_depth,
)
from conftest import candidate, mood, tech


DETAILED = (
    "At my last company I led the team that rebuilt our payments platform. "
    "For example, we moved the settlement jobs to an event-driven architecture and spent a lot of time on "
    "monitoring and performance tuning. Latency dropped by 40% within three months, and the on-call load "
    "fell sharply because deployment became boring. We also paired with the security group on testing so "
    "that every release was audited before it shipped to production."
)


def test_short_answer_scores_low_completeness():
    bundle = analyze_response(candidate("I guess."))
    assert bundle.completeness < 0.4
    assert bundle.emotional_state == "neutral"
    assert bundle.key_topics == ()
    assert bundle.confidence == 0.5


def test_completeness_rewards_length_examples_and_metrics():
    assert abs(score_completeness(DETAILED) - 0.8) < 1e-9
    assert abs(score_completeness("Short. Answer. Here. Now.") - 0.4) < 1e-9


def test_technical_depth_weights_entities_and_vocabulary():
    entities = [tech("Python"), tech("Kafka"), tech("Postgres"), tech("Kubernetes"), tech("Go")]
    text = "architecture scalability performance monitoring deployment"
    assert abs(score_technical_depth(text, entities) - 0.85) < 1e-9
    assert score_technical_depth("I like people.", []) == 0.2


def test_emotional_state_thresholds():
    assert classify_emotional_state(None) == "neutral"
    assert classify_emotional_state(mood(enthusiasm=0.9)) == "enthusiastic"
    assert classify_emotional_state(mood(nervousness=0.8)) == "nervous"
    assert classify_emotional_state(mood(confidence=0.75)) == "confident"
    assert classify_emotional_state(mood(frustration=0.65)) == "frustrated"
    assert classify_emotional_state(mood(polarity=0.6)) == "positive"
    assert classify_emotional_state(mood(polarity=-0.5)) == "negative"


def test_key_topics_are_deduplicated_and_capped():
    text = "I worked on billing and have experience with Terraform, using Python with my team to resolve conflict."
    topics = extract_key_topics(text, [tech("Python"), tech("python")])
    assert topics[0] == "Python"
    assert "teamwork" in topics and "conflict" in topics
    assert len(topics) <= 5
    assert len({topic.lower() for topic in topics}) == len(topics)


def test_information_gaps():
    gaps = identify_information_gaps("I worked on a project and improved things a lot.", [])
    assert gaps == (
        "technical_stack_details",
        "quantitative_metrics",
        "team_collaboration_details",
        "challenges_overcome",
    )
    assert identify_information_gaps(DETAILED, [tech("Python")]) == ()


def test_confidence_combines_sentiment_and_entities():
    value = analysis_confidence(mood(certainty=1.0), [tech("Go", 1.0)])
    assert value == 1.0
    assert analysis_confidence(None, []) == 0.5


def test_analysis_is_idempotent(session):
    utterance = candidate(DETAILED, entities=[tech("Kafka")], sentiment=mood(enthusiasm=0.8))
    first = analyze_response(utterance, session)
    second = analyze_response(utterance, session)
    assert first == second
    assert first.skills_revealed == ("Kafka",)
    assert session.messages == []
