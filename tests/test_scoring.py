from review_rounds.core.scoring import extract_score, feedback_summary


class TestExtractScore:
    def test_plain_score(self):
        assert extract_score("Score: 7/10\nReview: solid") == 7

    def test_markdown_heading(self):
        assert extract_score("### Score: 8/10\n\n### Review:\nNice") == 8

    def test_whitespace_tolerant(self):
        assert extract_score("Score:   6 / 10") == 6
        assert extract_score("Score:\n9/10") == 9

    def test_first_match_wins(self):
        assert extract_score("Score: 3/10 ... revised Score: 9/10") == 3

    def test_no_match_is_zero(self):
        assert extract_score("Looks fine to me, 8 out of 10") == 0
        assert extract_score("") == 0
        assert extract_score(None) == 0

    def test_keyword_is_case_sensitive(self):
        assert extract_score("score: 7/10") == 0

    def test_explicit_zero_matches_missing_score(self):
        assert extract_score("Score: 0/10") == extract_score("no score") == 0

    def test_out_of_range_is_zero(self):
        assert extract_score("Score: 11/10") == 0
        assert extract_score("Score: 100/10") == 0

    def test_bracketed_score_is_not_recognized(self):
        assert extract_score("Score: [7/10]") == 0

    def test_always_bounded(self):
        for text in ["Score: 10/10", "Score: 5/10", "Score: -1/10", "Score: x/10", "Score: 99999999999999999999/10"]:
            assert 0 <= extract_score(text) <= 10


def test_feedback_summary_mentions_score():
    summary = feedback_summary(6)
    assert summary.startswith("Previous score: 6/10")
