from callcenter.services.speaking_metrics import transcript_stats

from conftest import EXPECTED_TRANSCRIPT


def test_transcript_stats():
    stats = transcript_stats(EXPECTED_TRANSCRIPT + '[0:20] Tercero: Le transfiero con soporte.\n')
    assert stats['total_lines'] == 7
    assert stats['advisor_lines'] == 2
    assert stats['client_lines'] == 3
    assert stats['third_party_lines'] == 1
    assert stats['conversation_lines'] == 5
    assert stats['silence_lines'] == 1
    assert stats['silence_sec'] == 3


def test_transcript_stats_empty():
    stats = transcript_stats(None)
    assert stats['total_lines'] == 0
    assert stats['words'] == 0
