import argparse
import json
import sys
import logging

from .setup import setup_logging, load_config, build_orchestrator, LOGLEVEL_MAPPING
from .errors import DevPulseError

CONFIGFILE = "config/devpulse_config.yaml"
LOGFILE = "logs/devpulse.log"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='devpulse',
        description='Fetch launch, discussion and repository data with caching and rate limiting')
    parser.add_argument('command', nargs='?', choices=['fetch', 'health'], default='fetch')
    parser.add_argument('--config', default=CONFIGFILE, help='Path to the YAML config file')
    parser.add_argument('--provider', help='Restrict to a single provider')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    # Configure a basic logger to be able to log even before the configuration is loaded
    setup_logging(level=logging.INFO)
    logger = logging.getLogger(__name__)
    logger.info('Looking for config file at %s', args.config)

    try:
        config = load_config(args.config)
    except DevPulseError as e:
        logger.error('%s', e)
        return 2

    loglevel = config.get('loglevel', 'info')
    logfile_enabled = config.get('logfile_enabled', False)
    logfile = config.get('logfile_path', LOGFILE) if logfile_enabled else None
    setup_logging(level=LOGLEVEL_MAPPING[loglevel], logfile=logfile,
                  max_logfile_size_kb=config.get('max_logfile_size', 200))

    if not config.get('log_everything', False):
        logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)

    try:
        orchestrator = build_orchestrator(config)
    except DevPulseError as e:
        logger.error('%s', e)
        return 2

    with orchestrator:
        try:
            if args.command == 'health':
                output = orchestrator.health(args.provider).to_dict()
            elif args.provider:
                output = orchestrator.fetch(args.provider).to_dict()
            else:
                output = orchestrator.fetch_all().to_dict()
        except DevPulseError as e:
            logger.error('%s', e)
            return 1

    json.dump(output, sys.stdout, indent=2, default=str)
    sys.stdout.write('\n')
    return 0


if __name__ == '__main__':
    sys.exit(main())
