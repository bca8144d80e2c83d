#!/usr/bin/env python3
"""Command line interface for the face identity engine.

Usage:
    python -m face_identity embed --image face.jpg
    python -m face_identity register --key alice --name "Alice" --images ./alice_poses/
    python -m face_identity approve <registration_id>
    python -m face_identity match --image photo.jpg
    python -m face_identity list
    python -m face_identity learn --key alice
    python -m face_identity api --port 8000

Examples:
    # Register from five pose images (sorted: front, right, left, up, down)
    python -m face_identity register --key alice --name "Alice" \\
        --images front.jpg right.jpg left.jpg up.jpg down.jpg

    # Approve it straight away
    python -m face_identity register --key alice --name "Alice" --images ./alice/ --approve

    # Match a stored embedding instead of an image
    python -m face_identity match --embedding observed.json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

import cv2

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = [".jpg", ".jpeg", ".png", ".bmp"]


def _load_config(args):
    from .constants import get_config

    config = get_config()
    if args.config:
        config.reload(Path(args.config))
    return config


def _engine(args):
    from .pipeline import FaceIdentityEngine

    config = _load_config(args)
    detector = None
    if not args.no_detector:
        from .detection import HaarCascadeDetector
        detector = HaarCascadeDetector(bgr=True)
    return FaceIdentityEngine(detector=detector, config=config)


def _storage(args):
    from .storage import open_storage

    _load_config(args)
    return open_storage(backend=args.storage, path=args.data)


def _read_image(path: str):
    image = cv2.imread(path)
    if image is None:
        logger.error(f"Could not load image: {path}")
        sys.exit(1)
    return image


def _pose_paths(paths: List[str]) -> List[str]:
    """Expand a directory into its images, sorted by name."""
    if len(paths) == 1 and Path(paths[0]).is_dir():
        return sorted(
            str(p) for p in Path(paths[0]).iterdir()
            if p.suffix.lower() in IMAGE_SUFFIXES
        )
    return paths


def cmd_embed(args):
    """Embed the face in an image."""
    from .errors import FaceIdentityError

    engine = _engine(args)
    image = _read_image(args.image)

    try:
        result = engine.extract_embedding(image, bgr=True)
    except FaceIdentityError as e:
        logger.error(f"✗ {e}")
        return 1

    logger.info(f"Stable id: {result.stable_id}")
    logger.info(f"Raw feature variance: {result.raw_variance:.4f}")

    if args.output:
        with open(args.output, "w") as f:
            json.dump(result.to_dict(), f)
        logger.info(f"Saved to: {args.output}")
    return 0


def cmd_register(args):
    """Register an identity from guided pose images."""
    from .errors import InsufficientRegistrationSamples
    from .registration import RegistrationAggregator, promote_pending

    engine = _engine(args)
    storage = _storage(args)

    paths = _pose_paths(args.images)
    if not paths:
        logger.error("No pose images given")
        return 1
    images = [cv2.imread(p) for p in paths]

    aggregator = RegistrationAggregator(engine, engine.config.registration)
    try:
        pending = aggregator.submit(storage.pending, args.key, args.name or args.key, images, bgr=True)
    except InsufficientRegistrationSamples as e:
        logger.error(f"✗ {e}")
        return 1

    logger.info(f"✓ Registration {pending.registration_id} pending ({len(pending.angles)} angles)")

    if args.approve:
        entry = promote_pending(storage.pending, storage.gallery, pending.registration_id)
        logger.info(f"✓ Approved {entry.identity_key} ({len(entry.angles)} angles)")
    return 0


def cmd_approve(args):
    """Approve or reject a pending registration."""
    from .registration import promote_pending, reject_pending

    storage = _storage(args)

    if args.reject:
        if not reject_pending(storage.pending, args.registration_id):
            logger.error(f"Registration not found: {args.registration_id}")
            return 1
        logger.info(f"✓ Rejected {args.registration_id}")
        return 0

    entry = promote_pending(storage.pending, storage.gallery, args.registration_id)
    if entry is None:
        logger.error(f"Registration not found: {args.registration_id}")
        return 1
    logger.info(f"✓ Approved {entry.identity_key} ({len(entry.angles)} angles)")
    return 0


def cmd_match(args):
    """Match an image or a stored embedding against the gallery."""
    from .errors import FaceIdentityError

    engine = _engine(args)
    storage = _storage(args)

    try:
        if args.embedding:
            with open(args.embedding) as f:
                data = json.load(f)
            embedding = data["embedding"] if isinstance(data, dict) else data
        else:
            embedding = engine.extract_embedding(_read_image(args.image), bgr=True).embedding
        decision = engine.match_embedding(embedding, storage.gallery.list_entries())
    except FaceIdentityError as e:
        logger.error(f"✗ {e}")
        return 1

    if decision.is_confirmed:
        logger.info(f"✓ {decision.display_name} ({decision.confidence:.0%}, {decision.tier.value})")
    elif decision.is_ambiguous:
        names = ", ".join(c.display_name for c in decision.potential_matches)
        logger.info(f"? Ambiguous between {names} ({decision.confidence:.0%})")
    elif decision.potential_matches:
        top = decision.potential_matches[0]
        logger.info(f"? Possibly {top.display_name} ({top.score:.0%}, {decision.tier.value})")
    else:
        logger.info(f"✗ Unknown face (best {decision.confidence:.0%})")

    if args.json:
        print(json.dumps(decision.to_dict(), indent=2))
    return 0


def cmd_list(args):
    """List registered identities and pending registrations."""
    storage = _storage(args)

    entries = storage.gallery.list_entries()
    logger.info("Registered identities:")
    for entry in entries:
        learned = sum(1 for a in entry.angles if a.is_learned)
        logger.info(
            f"  - {entry.identity_key} ({entry.display_name}): "
            f"{len(entry.angles)} angle(s), {learned} learned"
        )
    logger.info(f"Total: {len(entries)} identities")

    pending = storage.pending.list_pending()
    if pending:
        logger.info("Pending registrations:")
        for p in pending:
            logger.info(f"  - {p.registration_id}: {p.identity_key} ({len(p.angles)} angle(s))")
    return 0


def cmd_learn(args):
    """Refine an identity from its recognition history."""
    from .adaptive import AdaptiveRefiner

    config = _load_config(args)
    storage = _storage(args)

    entry = AdaptiveRefiner(config.adaptive).refine_identity(
        args.key, storage.gallery, storage.history
    )
    if entry is None:
        logger.warning(f"Nothing learned for {args.key}")
        return 1
    logger.info(f"✓ {args.key} now has {len(entry.angles)} angle(s)")
    return 0


def cmd_api(args):
    """Start the API server."""
    import uvicorn
    from .api import create_app

    app = create_app(engine=_engine(args), storage=_storage(args))

    logger.info("Starting Face Identity API")
    logger.info(f"  URL: http://{args.host}:{args.port}")
    logger.info(f"  Docs: http://{args.host}:{args.port}/docs")

    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="face-identity",
        description="Face Identity Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m face_identity embed --image face.jpg
  python -m face_identity register --key alice --name "Alice" --images ./alice/
  python -m face_identity match --image photo.jpg
  python -m face_identity api --port 8000
        """
    )
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--storage", choices=["memory", "file", "firebase"],
                        help="Storage backend (default from config)")
    parser.add_argument("--data", help="Data directory for the file backend")
    parser.add_argument("--no-detector", action="store_true",
                        help="Treat input images as face crops")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Embed command
    embed_parser = subparsers.add_parser("embed", help="Embed the face in an image")
    embed_parser.add_argument("--image", "-i", required=True, help="Input image path")
    embed_parser.add_argument("--output", "-o", help="Write the embedding as JSON")

    # Register command
    register_parser = subparsers.add_parser("register", help="Register an identity")
    register_parser.add_argument("--key", "-k", required=True, help="Identity key")
    register_parser.add_argument("--name", "-n", help="Display name (defaults to key)")
    register_parser.add_argument("--images", "-i", nargs="+", required=True,
                                 help="Pose images in order, or a directory of them")
    register_parser.add_argument("--approve", action="store_true",
                                 help="Approve immediately instead of leaving it pending")

    # Approve command
    approve_parser = subparsers.add_parser("approve", help="Approve a pending registration")
    approve_parser.add_argument("registration_id", help="Pending registration id")
    approve_parser.add_argument("--reject", action="store_true", help="Reject instead")

    # Match command
    match_parser = subparsers.add_parser("match", help="Match against the gallery")
    source = match_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--image", "-i", help="Input image path")
    source.add_argument("--embedding", "-e", help="JSON file with an embedding")
    match_parser.add_argument("--json", action="store_true", help="Print the decision as JSON")

    # List command
    subparsers.add_parser("list", help="List identities and pending registrations")

    # Learn command
    learn_parser = subparsers.add_parser("learn", help="Refine an identity from history")
    learn_parser.add_argument("--key", "-k", required=True, help="Identity key")

    # API command
    api_parser = subparsers.add_parser("api", help="Start API server")
    api_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    api_parser.add_argument("--port", "-p", type=int, default=8000, help="Port to bind to")

    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    commands = {
        "embed": cmd_embed,
        "register": cmd_register,
        "approve": cmd_approve,
        "match": cmd_match,
        "list": cmd_list,
        "learn": cmd_learn,
        "api": cmd_api,
    }

    handler = commands.get(args.command)
    if handler:
        result = handler(args)
        sys.exit(result if result else 0)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
