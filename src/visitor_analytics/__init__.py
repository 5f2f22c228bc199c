"""
Privacy-focused visitor analytics.

Usage:
    from visitor_analytics import setup_analytics

    analytics = setup_analytics(
        site_name="example.com",
        d1_database_id="your-d1-id",
        cf_account_id="your-account-id",
        cf_api_token="your-api-token",
        geoip_database_path="/var/lib/GeoIP/GeoLite2-City.mmdb",
    )

    # Include the JSON API and the dashboard page
    app.include_router(analytics.api_router, prefix="/api")
    app.include_router(analytics.dashboard_router)

    # In templates: {{ analytics.tracking_script() | safe }}

Or run the bundled app:
    uvicorn visitor_analytics.app:create_app --factory
"""

from .config import AnalyticsConfig
from .core.client import VisitorStore
from .errors import (
    AnalyticsError,
    ConfigurationError,
    ExternalDependencyError,
    RateLimitExceeded,
    ValidationError,
)
from .geo import GeoLocator
from .ingest import IngestHandler, IngestResult, IngestStatus
from .privacy import ConsentState, anonymize_ip
from .reporting import ReportingHandler
from .routes import create_api_router, create_dashboard_router
from .threats import ThreatAnalyzer, ThreatSignatures
from .validation import DataValidator, validate_and_sanitize

__version__ = "0.1.0"
__all__ = [
    "setup_analytics", "Analytics", "AnalyticsConfig",
    "VisitorStore", "IngestHandler", "IngestResult", "IngestStatus", "ReportingHandler",
    "DataValidator", "validate_and_sanitize", "ThreatAnalyzer", "anonymize_ip",
    "AnalyticsError", "ValidationError", "ExternalDependencyError",
    "ConfigurationError", "RateLimitExceeded",
]


class Analytics:
    """Wires the store, handlers and routers for one site."""

    def __init__(self, config: AnalyticsConfig, api_prefix: str = "/api"):
        self.config = config
        self.api_prefix = api_prefix
        self.store = VisitorStore(
            d1_database_id=config.d1_database_id,
            cf_account_id=config.cf_account_id,
            cf_api_token=config.cf_api_token,
        )
        self.consent = ConsentState()
        self.geo = GeoLocator(config.geoip_database_path)

        signatures = ThreatSignatures()
        if config.datacenter_prefixes:
            signatures = ThreatSignatures(datacenter_ip_prefixes=tuple(config.datacenter_prefixes))

        self.ingest = IngestHandler(
            self.store,
            self.geo,
            self.consent,
            analyzer=ThreatAnalyzer(signatures),
            block_high_risk=config.block_high_risk_requests,
        )
        self.reporting = ReportingHandler(
            self.store, self.consent, default_days=config.timeline_days
        )
        self.api_router = create_api_router(
            config, self.store, self.consent, self.ingest, self.reporting
        )
        self.dashboard_router = create_dashboard_router(
            config, self.reporting, tracking_script=self.tracking_script()
        )

    def tracking_script(self) -> str:
        """Generate the tracking script HTML for templates.

        Collects browser, screen and locale details plus canvas, audio and
        WebGL fingerprints once per page load, and POSTs them as JSON to the
        track endpoint. Geo fields are never sent;
        the server derives them from the anonymized address.
        """
        return f'''<script>
(function(){{
  var n=navigator,s=screen,w=window,d=document;
  var url="{self.api_prefix}/track";

  function browser(ua){{
    if(/Edg\\//.test(ua))return["Edge",(ua.match(/Edg\\/([\\d.]+)/)||[])[1]];
    if(/OPR\\//.test(ua))return["Opera",(ua.match(/OPR\\/([\\d.]+)/)||[])[1]];
    if(/Firefox\\//.test(ua))return["Firefox",(ua.match(/Firefox\\/([\\d.]+)/)||[])[1]];
    if(/Chrome\\//.test(ua))return["Chrome",(ua.match(/Chrome\\/([\\d.]+)/)||[])[1]];
    if(/Safari\\//.test(ua))return["Safari",(ua.match(/Version\\/([\\d.]+)/)||[])[1]];
    if(/MSIE |Trident\\//.test(ua))return["IE",(ua.match(/(?:MSIE |rv:)([\\d.]+)/)||[])[1]];
    return["Unknown",""];
  }}

  function os(ua){{
    if(/Windows/.test(ua))return"Windows";
    if(/Android/.test(ua))return"Android";
    if(/iPhone|iPad|iPod/.test(ua))return"iOS";
    if(/Mac OS X/.test(ua))return"MacOS";
    if(/Linux/.test(ua))return"Linux";
    return"Unknown";
  }}

  function device(ua){{
    if(/iPad|Tablet/.test(ua)||(/Android/.test(ua)&&!/Mobile/.test(ua)))return"Tablet";
    if(/Mobi|iPhone|iPod/.test(ua))return"Mobile";
    return"Desktop";
  }}

  function canvasPrint(){{
    try{{
      var c=d.createElement("canvas"),x=c.getContext("2d");
      x.textBaseline="top";x.font="14px Arial";
      x.fillStyle="#f60";x.fillRect(125,1,62,20);
      x.fillStyle="#069";x.fillText("visitor analytics",2,15);
      x.fillStyle="rgba(102,204,0,0.7)";x.fillText("visitor analytics",4,17);
      return c.toDataURL().slice(-1000);
    }}catch(e){{return"";}}
  }}

  function webglRenderer(){{
    try{{
      var c=d.createElement("canvas"),gl=c.getContext("webgl")||c.getContext("experimental-webgl");
      var info=gl&&gl.getExtension("WEBGL_debug_renderer_info");
      return info?String(gl.getParameter(info.UNMASKED_RENDERER_WEBGL)).slice(0,200):"";
    }}catch(e){{return"";}}
  }}

  function audioPrint(){{
    try{{
      var A=w.OfflineAudioContext||w.webkitOfflineAudioContext;
      if(!A)return Promise.resolve("");
      var ctx=new A(1,5000,44100),o=ctx.createOscillator(),k=ctx.createDynamicsCompressor();
      o.type="triangle";o.frequency.value=10000;
      o.connect(k);k.connect(ctx.destination);o.start(0);
      return ctx.startRendering().then(function(buf){{
        var data=buf.getChannelData(0),sum=0;
        for(var i=4500;i<5000;i++)sum+=Math.abs(data[i]);
        return String(sum).slice(0,1000);
      }}).catch(function(){{return"";}});
    }}catch(e){{return Promise.resolve("");}}
  }}

  var ua=n.userAgent||"",b=browser(ua),lang=n.language||"";
  var data={{
    user_agent:ua,
    browser_name:b[0],
    browser_version:b[1]||"",
    os_name:os(ua),
    device_type:device(ua),
    platform:n.platform||"",
    screen_width:s.width,
    screen_height:s.height,
    viewport_width:w.innerWidth,
    viewport_height:w.innerHeight,
    color_depth:s.colorDepth,
    timezone_offset:new Date().getTimezoneOffset(),
    timezone:(Intl.DateTimeFormat().resolvedOptions().timeZone||""),
    language:lang.slice(0,10),
    user_language:(n.languages&&n.languages[0])||lang,
    referrer:d.referrer||"",
    page_visited:location.href,
    touch_support:("ontouchstart" in w)||n.maxTouchPoints>0,
    hardware_concurrency:n.hardwareConcurrency||0,
    canvas_fingerprint:canvasPrint(),
    webgl_renderer:webglRenderer()
  }};

  audioPrint().then(function(audio){{
    data.audio_fingerprint=audio;
    return fetch(url,{{
      method:"POST",
      headers:{{"Content-Type":"application/json"}},
      body:JSON.stringify(data),
      keepalive:true
    }});
  }}).catch(function(){{}});
}})();
</script>'''


def setup_analytics(
    d1_database_id: str,
    cf_account_id: str,
    cf_api_token: str,
    site_name: str = "portfolio",
    **options,
) -> Analytics:
    """
    Set up analytics for a site.

    Args:
        d1_database_id: Cloudflare D1 database ID
        cf_account_id: Cloudflare account ID
        cf_api_token: Cloudflare API token with D1 access
        site_name: Name shown on the dashboard
        **options: Any other `AnalyticsConfig` field (api_key,
            geoip_database_path, retention_days, ...)

    Returns:
        Analytics instance with store, handlers and routers wired
    """
    config = AnalyticsConfig(
        d1_database_id=d1_database_id,
        cf_account_id=cf_account_id,
        cf_api_token=cf_api_token,
        site_name=site_name,
        **options,
    )
    return Analytics(config)
