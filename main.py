"""
Main application entry point for the LoRA captioner.
Runs the HTTP API, or captions a local directory of images into a zip archive.
"""

import os
import sys
import logging
from tqdm import tqdm

from lora_captioner.archive import write_archive
from lora_captioner.caption_generator import CaptionGenerator
from lora_captioner.config import ConfigValidator, parse_arguments
from lora_captioner.errors import CaptionerError
from lora_captioner.file_manager import FileManager
from lora_captioner.image_processor import BatchProcessor
from lora_captioner.validation import UploadedFile, prepare_uploads, validate_process_form


# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


def validate_credentials():
    """Log the credential report and exit when no provider is configured."""
    validator = ConfigValidator()
    validator.log_status()
    if validator.has_blocking_errors():
        sys.exit(1)
    return validator


def load_directory(input_dir):
    """Read every file in input_dir as an upload candidate, sorted by name."""
    uploads = []
    for name in sorted(os.listdir(input_dir)):
        path = os.path.join(input_dir, name)
        if not os.path.isfile(path):
            continue
        with open(path, 'rb') as f:
            uploads.append(UploadedFile(name, None, f.read()))
    return uploads


def caption_directory(args):
    """Caption all images in args.input_dir and write the archive to args.output."""
    prefix, options = validate_process_form(
        args.provider, args.prefix, args.keyword, args.checkpoint,
        args.guidance, args.negative_hints, args.length, args.strict_focus,
    )

    images = prepare_uploads(load_directory(args.input_dir))
    logging.info(f"📂 Found {len(images)} images in {args.input_dir}")

    store = FileManager()
    store.set_uploaded_images(images)
    processor = BatchProcessor(store, CaptionGenerator(), request_delay=args.delay)

    with tqdm(total=len(images), unit='image', desc='Captioning', ncols=100) as pbar:
        summary = processor.run(
            store.get_uploaded_images(), options, args.provider, args.model, prefix,
            on_progress=lambda idx, total, result: pbar.update(1),
        )

    size = write_archive(summary.results, args.output)
    logging.info(f"📦 Wrote {len(summary.results)} pairs ({size} bytes) to {args.output}")

    if summary.error_count:
        logging.warning(f"⚠️  {summary.error_count} images received fallback captions. See {store.log_file}")
    return summary


def serve(args):
    import uvicorn
    from lora_captioner.server import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)


def main(argv=None):
    """Main application entry point."""
    args = parse_arguments(argv)

    try:
        if args.command == "caption":
            validate_credentials()
            caption_directory(args)
        else:
            serve(args)

    except CaptionerError as e:
        logging.error(f"❌ {e.error.to_log('cli')}")
        if e.error.suggestion:
            logging.info(f"💡 {e.error.suggestion}")
        sys.exit(2)
    except KeyboardInterrupt:
        logging.info("🛑 Process interrupted by user")
        sys.exit(0)
    except Exception as e:
        logging.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
