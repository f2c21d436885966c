"""User-Agent based bot detection.

A click is treated as automated when the ``user-agents`` parser flags the
UA as a spider, or when the lower-cased UA contains any entry of
``BOT_SIGNATURES`` anywhere in the string. Bots are still redirected;
they are only left out of analytics.
"""

from functools import lru_cache

from user_agents import parse
from user_agents.parsers import UserAgent

# Substrings matched case-insensitively against the raw User-Agent.
BOT_SIGNATURES: tuple[str, ...] = (
    # Generic patterns
    "bot",
    "spider",
    "crawl",
    # Link-preview / unfurlers
    "facebookexternalhit",
    "facebot",
    "whatsapp",
    "slackbot",
    "telegrambot",
    "applebot",
    "twitterbot",
    "linkedinbot",
    "preview",
    # Google tooling
    "google web preview",
    "google favicon",
    "google-ad",
    "google-site-verification",
    "googlesecurityscanner",
    "google_analytics_snippet_validator",
    "chrome-lighthouse",
    # Security scanners
    "burpcollaborator.net/",
    "zgrab/",
    "netcraftsurveyagent/",
    "netcraft web server survey",
    # HTTP client libraries
    "go-http-client/",
    "curl/",
    "wget/",
    "python-requests/",
    "python-urllib/",
    "pycurl/",
    "java/",
    "libwww-perl/",
    "okhttp/",
    "ruby",
    # Headless browsers and renderers
    "headlesschrome/",
    "dumprendertree/",
    "phantomjs",
    "slimerjs",
    "wkhtmltoimage",
    "wkhtmltopdf",
    # Misc tools
    "admantx",
    "alexatoolbar/",
    "bingpreview/",
    "dataprovider.com",
    "faraday v",
    "gigablastopensource/",
    "owler/",
    "pageanalyzer/",
    "panscient.com",
    "ruxitrecorder/",
    "ruxitsynthetic/",
    "synapse",
    "tracemyfile/",
    "trendsmapresolver/",
    "ubermetrics-technologies.com",
    "wappalyzer",
    "whatweb/",
    "wininet",
    "wordpress.com",
    "wsr-agent/",
)


@lru_cache(maxsize=4096)
def parse_user_agent(user_agent: str) -> UserAgent:
    """Parse a User-Agent string, caching results for repeat visitors."""
    return parse(user_agent or "")


def matches_signature(user_agent: str) -> bool:
    """Check the raw UA against the signature catalog."""
    lowered = user_agent.lower()
    return any(signature in lowered for signature in BOT_SIGNATURES)


def is_bot(user_agent: str) -> bool:
    """Return True if the User-Agent looks like a bot or link-preview fetcher."""
    if not user_agent:
        return False
    if parse_user_agent(user_agent).is_bot:
        return True
    return matches_signature(user_agent)
