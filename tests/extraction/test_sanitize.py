from ledgee.extraction.sanitize import log_preview, sanitize_text


def test_sanitize_masks_card_like_numbers():
    masked = sanitize_text("Paid with 4111 1111 1111 1234 today")
    assert "4111 1111 1111 1234" not in masked
    assert "4111********1234" in masked


def test_sanitize_leaves_short_numbers():
    assert sanitize_text("Total 13,365.00 on 2024-01-17") == "Total 13,365.00 on 2024-01-17"


def test_log_preview_flattens_and_truncates():
    preview = log_preview("line one\n\n   line two " + "x" * 200, limit=20)
    assert preview == "line one line two xx..."
    assert "\n" not in preview
