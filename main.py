#!/usr/bin/env python3
"""
Dedicated nodes admission webhook.

Pins Pods created in dedicated namespaces to their node pool by adding
tolerations for the pool's taint and, optionally, a nodeSelector.
"""

import argparse
import logging
import sys

from dedicator.config import ConfigError, PolicyConfig, ServerConfig, load_policy_config, load_server_config

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

logger = logging.getLogger("dedicator")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mutating admission webhook that pins Pods to dedicated nodes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve HTTPS on :443
  python main.py --tls-cert-file /certs/tls.crt --tls-key-file /certs/tls.key

  # Leave pods labelled app=kube-proxy alone
  python main.py --ignore-pods app=kube-proxy,tier=system ...

  # Show what the webhook would answer for a captured AdmissionReview
  python main.py --review-file review.json
        """,
    )

    parser.add_argument(
        "--tls-cert-file",
        help="File containing the default x509 Certificate for HTTPS. "
        "(CA cert, if any, concatenated after server cert).",
    )
    parser.add_argument("--tls-key-file", help="File containing the default x509 private key matching --tls-cert-file.")
    parser.add_argument("--host", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Listen port (default: 443)")

    parser.add_argument("--node-taint-key", help="Pod tolerations will be created with this key.")
    parser.add_argument("--node-label-name", help="This will be used as pod nodeSelector key.")
    parser.add_argument(
        "--namespace-annotation-overwrite", help="Which namespace annotation will overwrite namespace name."
    )
    parser.add_argument(
        "--namespace-annotation-only-dedicated", help="Which namespace annotation will be read to force nodeSelector."
    )
    parser.add_argument(
        "--pod-annotation-only-dedicated", help="Which pod annotation will be read to force nodeSelector."
    )
    parser.add_argument("--ignore-pods", help="Comma separated list of label=value pairs for pods to ignore")

    parser.add_argument(
        "--review-file",
        metavar="PATH",
        help="Answer a single AdmissionReview read from PATH ('-' for stdin) and print the response, then exit.",
    )
    return parser


def policy_from_args(args: argparse.Namespace, base: PolicyConfig) -> PolicyConfig:
    return base.with_overrides(
        taint_key=args.node_taint_key,
        node_label_key=args.node_label_name,
        namespace_override_annotation=args.namespace_annotation_overwrite,
        namespace_only_dedicated_annotation=args.namespace_annotation_only_dedicated,
        pod_only_dedicated_annotation=args.pod_annotation_only_dedicated,
        ignore_labels=args.ignore_pods,
    )


def server_from_args(args: argparse.Namespace, base: ServerConfig) -> ServerConfig:
    return base.with_overrides(
        host=args.host,
        port=args.port,
        tls_cert_file=args.tls_cert_file,
        tls_key_file=args.tls_key_file,
    )


def answer_review_file(path: str, policy: PolicyConfig) -> None:
    import json

    from dedicator.api.admission import handle_review
    from dedicator.providers.k8s_provider import get_k8s_provider

    if path == "-":
        payload = sys.stdin.buffer.read()
    else:
        with open(path, "rb") as f:
            payload = f.read()

    review = handle_review(payload, lookup=get_k8s_provider(), policy=policy)
    print(json.dumps(review, indent=2, sort_keys=False))


def main(argv=None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        policy = policy_from_args(args, load_policy_config())
        server = server_from_args(args, load_server_config())
    except ConfigError as e:
        logger.error("Invalid configuration: %s", str(e))
        return 2

    if args.review_file:
        answer_review_file(args.review_file, policy)
        return 0

    from dedicator.api.webhook import run as run_webhook

    run_webhook(server, policy=policy)
    return 0


if __name__ == "__main__":
    sys.exit(main())
