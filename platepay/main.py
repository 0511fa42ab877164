import argparse
import logging
import sys

import cv2

from .actions.payments import PaymentGateway
from .config import AppConfig, load_config
from .countries import supported_countries
from .errors import ConfigError, InvalidManualPlate, PaymentAPIError
from .ocr import TesseractOCR
from .pipeline import MultiAttemptOCR, PlateScanner, ResultSelector, validate_manual_plate
from .preprocess import ImagePreprocessor


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_scanner(cfg: AppConfig) -> PlateScanner:
    engine = TesseractOCR(cfg.ocr.enabled, cfg.ocr.tesseract_cmd)
    preprocessor = ImagePreprocessor(tuple(cfg.scan.target_size), cfg.scan.binary_threshold)
    ocr = MultiAttemptOCR(
        engine,
        preprocessor=preprocessor,
        language=cfg.ocr.language,
        timeout_sec=cfg.ocr.timeout_sec,
        page_segmentation_mode=cfg.ocr.psm,
        max_workers=cfg.scan.max_workers,
    )
    return PlateScanner(ocr, ResultSelector(cfg.scan.tie_band))


def build_gateway(cfg: AppConfig) -> PaymentGateway:
    return PaymentGateway(cfg.payments.mode, http=cfg.payments.http.__dict__)


def _print_status(status):
    expires = f" (expires {status.expiration_time:%Y-%m-%d %H:%M})" if status.expiration_time else ""
    print(f"{status.plate}: {status.status.upper()}{expires}")


def _cmd_scan(args, cfg: AppConfig) -> int:
    frame = cv2.imread(args.image)
    if frame is None:
        logging.error("Cannot read image %s", args.image)
        return 2
    outcome = build_scanner(cfg).scan(frame, args.country)
    for a in outcome.attempts:
        flag = " [fallback]" if a.used_fallback else ""
        print(f"  {a.attempt_label:<18} {a.extracted_plate or '-':<10} {a.confidence:5.1f}%{flag}")
    if not outcome.detected:
        print("No license plate detected. Enter the plate manually with `check`.")
        return 1
    print(f"Plate: {outcome.final_plate}")
    return _settle(outcome.final_plate, args, cfg)


def _cmd_check(args, cfg: AppConfig) -> int:
    try:
        plate = validate_manual_plate(args.plate, args.country)
    except InvalidManualPlate as e:
        logging.error("%s", e)
        return 2
    return _settle(plate, args, cfg)


def _settle(plate: str, args, cfg: AppConfig) -> int:
    gateway = build_gateway(cfg)
    try:
        if args.pay:
            if args.cost is None:
                logging.error("--cost is required with --pay")
                return 2
            confirmation = gateway.pay(plate, args.pay, args.cost)
            print(f"Paid {confirmation.cost} for {confirmation.duration_hours}h, expires {confirmation.expiration_time:%Y-%m-%d %H:%M}")
        _print_status(gateway.status(plate))
    except (PaymentAPIError, ValueError) as e:
        logging.error("Payment check failed for %s: %s", plate, e)
        return 3
    return 0


def _cmd_countries(args, cfg: AppConfig) -> int:
    for c in supported_countries():
        print(f"{c['code']}  {c['name']:<16} {', '.join(c['patterns'])}")
    return 0


def run(argv=None) -> int:
    parser = argparse.ArgumentParser(description="License plate scanner for parking payments")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--country", default=None, help="Country code (default from config)")
    parser.add_argument("--log-level", default=None, help="Override logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Read a plate from an image and check its payment")
    scan.add_argument("image")
    check = sub.add_parser("check", help="Check payment for a typed-in plate")
    check.add_argument("plate")
    for p in (scan, check):
        p.add_argument("--pay", type=float, default=None, metavar="HOURS", help="Record a payment for HOURS")
        p.add_argument("--cost", type=float, default=None)
    sub.add_parser("countries", help="List supported countries and plate formats")

    args = parser.parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    setup_logging(args.log_level or cfg.logging.level)
    args.country = args.country or cfg.scan.country

    handlers = {"scan": _cmd_scan, "check": _cmd_check, "countries": _cmd_countries}
    return handlers[args.command](args, cfg)


if __name__ == "__main__":
    sys.exit(run())
