import pytest

pytest.importorskip("uvicorn")

from sellerboard.main import _load_targets_file, _watch_options, parse_args


def test_parse_args_splits_collect_targets() -> None:
    args = parse_args(["--collect", " https://a.example/1 ,,https://a.example/2"])

    assert args.targets == ["https://a.example/1", "https://a.example/2"]
    assert args.serve is False


def test_parse_args_watch_requires_product_id() -> None:
    with pytest.raises(SystemExit):
        parse_args(["--watch", "https://www.coupang.com/vp/products/1"])


@pytest.mark.parametrize(
    "argv",
    [
        ["--interval", "0"],
        ["--threshold", "-1"],
        ["--retries", "0"],
        ["--dashboard"],
    ],
)
def test_parse_args_rejects_invalid_values(argv) -> None:
    with pytest.raises(SystemExit):
        parse_args(argv)


def test_watch_options_from_flags() -> None:
    args = parse_args(
        [
            "--watch",
            "https://www.coupang.com/vp/products/1",
            "--product-id",
            "p1",
            "--interval",
            "15",
            "--threshold",
            "500",
            "--no-stock-alert",
        ]
    )

    options = _watch_options(args)

    assert options.interval_minutes == 15
    assert options.price_threshold == 500
    assert options.price_alert is None
    assert options.stock_alert is False


def test_load_targets_file_skips_blank_and_comment_lines(tmp_path) -> None:
    path = tmp_path / "targets.txt"
    path.write_text("# weekly\nhttps://a.example/1\n\n  https://a.example/2  \n", encoding="utf-8")

    assert _load_targets_file(path) == ["https://a.example/1", "https://a.example/2"]


def test_load_targets_file_missing(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        _load_targets_file(tmp_path / "absent.txt")
