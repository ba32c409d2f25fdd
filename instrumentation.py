# ========================================================
# ================  instrumentation.py  ==================
# ========================================================
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Tuple

DATA_URI_BINDING = "__onDataURIDetected"
AUDIO_BUFFER_BINDING = "__onAudioBufferDetected"

# Shared page-side helpers. Prepended to every hook script; only the first
# copy that runs defines window.__dataUriExporter.
_PRELUDE = r"""
(() => {
  if (window.__dataUriExporter) return;
  try {
    const PREFIX = __FINGERPRINT_SAMPLES__;
    const URL_RX = /url\(\s*['"]?(data:[^'")\s]+)['"]?\s*\)/gi;
    const seenURIs = new Set();
    const audioKeys = new WeakMap();

    function quiet(p) {
      if (p && typeof p.catch === 'function') p.catch(() => {});
    }

    function forwardDataURI(url, origin) {
      try {
        if (typeof url !== 'string') return;
        url = url.trim();
        if (!url.startsWith('data:') || seenURIs.has(url)) return;
        if (typeof window.__onDataURIDetected !== 'function') return;
        seenURIs.add(url);
        quiet(window.__onDataURIDetected(url, origin || 'runtime'));
      } catch (e) {
        console.error('[DataURI Exporter] forwardDataURI error:', e);
      }
    }

    function forwardAudioBuffer(buffer, origin) {
      try {
        if (!buffer || typeof buffer.getChannelData !== 'function') return;
        if (typeof window.__onAudioBufferDetected !== 'function') return;
        const n = Math.min(PREFIX, buffer.length);
        const head = buffer.numberOfChannels > 0
          ? Array.from(buffer.getChannelData(0).subarray(0, n)).join(',')
          : '';
        const key = buffer.sampleRate + '_' + buffer.length + '_' + buffer.numberOfChannels + '_' + head;
        if (audioKeys.get(buffer) === key) return;
        audioKeys.set(buffer, key);

        const channels = [];
        for (let i = 0; i < buffer.numberOfChannels; i++) {
          channels.push(Array.from(buffer.getChannelData(i)));
        }
        quiet(window.__onAudioBufferDetected({
          sampleRate: buffer.sampleRate,
          length: buffer.length,
          numberOfChannels: buffer.numberOfChannels,
          channels: channels,
          origin: origin || 'audio'
        }));
      } catch (e) {
        console.error('[DataURI Exporter] forwardAudioBuffer error:', e);
      }
    }

    function urlsInStyle(text) {
      const out = [];
      if (!text) return out;
      for (const m of String(text).matchAll(URL_RX)) out.push(m[1]);
      return out;
    }

    function scanElement(el, origin) {
      try {
        if (!el || el.nodeType !== 1 || typeof el.getAttribute !== 'function') return;
        const src = el.getAttribute('src');
        const href = el.getAttribute('href');
        if (src) forwardDataURI(src, origin);
        if (href) forwardDataURI(href, origin);
        for (const u of urlsInStyle(el.getAttribute('style'))) forwardDataURI(u, origin);
      } catch (e) {
        console.error('[DataURI Exporter] Element processing error:', e);
      }
    }

    function audioContextPrototypes() {
      const out = [];
      const ctors = [
        window.BaseAudioContext, window.AudioContext, window.webkitAudioContext,
        window.OfflineAudioContext, window.webkitOfflineAudioContext
      ];
      for (const C of ctors) {
        if (typeof C === 'function' && C.prototype && out.indexOf(C.prototype) < 0) out.push(C.prototype);
      }
      return out;
    }

    // Replace an own method keeping its descriptor; never wraps twice.
    function wrapMethod(proto, name, makeWrapper) {
      if (!proto || !Object.prototype.hasOwnProperty.call(proto, name)) return false;
      const desc = Object.getOwnPropertyDescriptor(proto, name);
      const orig = desc && desc.value;
      if (typeof orig !== 'function' || orig.__dataUriExporterOriginal) return false;
      const wrapped = makeWrapper(orig);
      wrapped.__dataUriExporterOriginal = orig;
      Object.defineProperty(proto, name, Object.assign({}, desc, { value: wrapped }));
      return true;
    }

    window.__dataUriExporter = {
      forwardDataURI, forwardAudioBuffer, urlsInStyle, scanElement,
      audioContextPrototypes, wrapMethod
    };
  } catch (e) {
    console.error('[DataURI Exporter] Script injection error:', e);
  }
})();
"""

_FETCH_HOOK = r"""
(() => {
  try {
    const X = window.__dataUriExporter;
    const origFetch = window.fetch;
    if (!X || typeof origFetch !== 'function') return;
    window.fetch = function(input, init) {
      try {
        const u = (typeof input === 'string') ? input : (input && (input.url || input.href));
        X.forwardDataURI(u, 'fetch');
      } catch (e) {
        console.error('[DataURI Exporter] detectDataURI in fetch error:', e);
      }
      return origFetch.apply(this, arguments);
    };
  } catch (e) {
    console.error('[DataURI Exporter] Failed to intercept fetch:', e);
  }
})();
"""

_XHR_HOOK = r"""
(() => {
  try {
    const X = window.__dataUriExporter;
    if (!X || typeof XMLHttpRequest !== 'function') return;
    X.wrapMethod(XMLHttpRequest.prototype, 'open', (origOpen) => function(method, url) {
      try {
        X.forwardDataURI(url == null ? url : String(url), 'xhr');
      } catch (e) {
        console.error('[DataURI Exporter] detectDataURI in XMLHttpRequest error:', e);
      }
      return origOpen.apply(this, arguments);
    });
  } catch (e) {
    console.error('[DataURI Exporter] Failed to intercept XMLHttpRequest:', e);
  }
})();
"""

_DECODE_AUDIO_DATA_HOOK = r"""
(() => {
  try {
    const X = window.__dataUriExporter;
    if (!X) return;
    for (const proto of X.audioContextPrototypes()) {
      X.wrapMethod(proto, 'decodeAudioData', (orig) => function() {
        const args = Array.prototype.slice.call(arguments);
        if (typeof args[1] === 'function') {
          const onSuccess = args[1];
          args[1] = function(buffer) {
            X.forwardAudioBuffer(buffer, 'decodeAudioData');
            return onSuccess.apply(this, arguments);
          };
        }
        const result = orig.apply(this, args);
        if (result && typeof result.then === 'function') {
          return result.then((buffer) => {
            X.forwardAudioBuffer(buffer, 'decodeAudioData');
            return buffer;
          });
        }
        return result;
      });
    }
  } catch (e) {
    console.error('[DataURI Exporter] Failed to intercept decodeAudioData:', e);
  }
})();
"""

# Reported on the next task: pages fill a fresh buffer right after creating it.
_CREATE_BUFFER_HOOK = r"""
(() => {
  try {
    const X = window.__dataUriExporter;
    if (!X) return;
    for (const proto of X.audioContextPrototypes()) {
      X.wrapMethod(proto, 'createBuffer', (orig) => function() {
        const buffer = orig.apply(this, arguments);
        setTimeout(() => X.forwardAudioBuffer(buffer, 'createBuffer'), 0);
        return buffer;
      });
    }
  } catch (e) {
    console.error('[DataURI Exporter] Failed to intercept createBuffer:', e);
  }
})();
"""

_BUFFER_SOURCE_HOOK = r"""
(() => {
  try {
    const X = window.__dataUriExporter;
    const Src = window.AudioBufferSourceNode;
    if (!X || typeof Src !== 'function') return;
    const proto = Src.prototype;

    const desc = Object.getOwnPropertyDescriptor(proto, 'buffer');
    if (desc && desc.get && desc.set && !desc.set.__dataUriExporterOriginal) {
      const setter = function(value) {
        desc.set.call(this, value);
        if (value) X.forwardAudioBuffer(value, 'bufferSource');
      };
      setter.__dataUriExporterOriginal = desc.set;
      Object.defineProperty(proto, 'buffer', {
        configurable: true,
        enumerable: desc.enumerable,
        get: desc.get,
        set: setter
      });
    }

    X.wrapMethod(proto, 'start', (origStart) => function() {
      try {
        const buffer = this.buffer;
        if (buffer) X.forwardAudioBuffer(buffer, 'bufferSource.start');
      } catch (e) {
        console.error('[DataURI Exporter] detectAudioBuffer in start error:', e);
      }
      return origStart.apply(this, arguments);
    });
  } catch (e) {
    console.error('[DataURI Exporter] Failed to intercept createBufferSource:', e);
  }
})();
"""

_SCRIPT_PROCESSOR_HOOK = r"""
(() => {
  try {
    const X = window.__dataUriExporter;
    const SP = window.ScriptProcessorNode;
    if (!X || typeof SP !== 'function') return;
    const proto = SP.prototype;
    const wrappers = new WeakMap();

    function wrapHandler(handler) {
      if (typeof handler !== 'function') return handler;
      let w = wrappers.get(handler);
      if (!w) {
        w = function(event) {
          try {
            if (event && event.inputBuffer) X.forwardAudioBuffer(event.inputBuffer, 'scriptProcessor');
          } catch (e) {
            console.error('[DataURI Exporter] detectAudioBuffer in onaudioprocess error:', e);
          }
          return handler.apply(this, arguments);
        };
        w.__dataUriExporterHandler = handler;
        wrappers.set(handler, w);
      }
      return w;
    }

    const desc = Object.getOwnPropertyDescriptor(proto, 'onaudioprocess');
    if (desc && desc.get && desc.set) {
      Object.defineProperty(proto, 'onaudioprocess', {
        configurable: true,
        enumerable: desc.enumerable,
        get() {
          const w = desc.get.call(this);
          return (w && w.__dataUriExporterHandler) || w;
        },
        set(handler) {
          desc.set.call(this, wrapHandler(handler));
        }
      });
    }

    const origAdd = proto.addEventListener;
    const origRemove = proto.removeEventListener;
    proto.addEventListener = function(type, listener) {
      const args = Array.prototype.slice.call(arguments);
      if (type === 'audioprocess') args[1] = wrapHandler(listener);
      return origAdd.apply(this, args);
    };
    proto.removeEventListener = function(type, listener) {
      const args = Array.prototype.slice.call(arguments);
      if (type === 'audioprocess' && typeof listener === 'function' && wrappers.has(listener)) {
        args[1] = wrappers.get(listener);
      }
      return origRemove.apply(this, args);
    };
  } catch (e) {
    console.error('[DataURI Exporter] Failed to intercept createScriptProcessor:', e);
  }
})();
"""

_OFFLINE_RENDERING_HOOK = r"""
(() => {
  try {
    const X = window.__dataUriExporter;
    const Off = window.OfflineAudioContext || window.webkitOfflineAudioContext;
    if (!X || typeof Off !== 'function') return;
    X.wrapMethod(Off.prototype, 'startRendering', (orig) => function() {
      try {
        this.addEventListener('complete', (event) => {
          X.forwardAudioBuffer(event && event.renderedBuffer, 'startRendering');
        }, { once: true });
      } catch (e) {
        console.error('[DataURI Exporter] Failed to watch oncomplete:', e);
      }
      const result = orig.apply(this, arguments);
      if (result && typeof result.then === 'function') {
        return result.then((buffer) => {
          X.forwardAudioBuffer(buffer, 'startRendering');
          return buffer;
        });
      }
      return result;
    });
  } catch (e) {
    console.error('[DataURI Exporter] Failed to intercept startRendering:', e);
  }
})();
"""

_MUTATION_OBSERVER_HOOK = r"""
(() => {
  try {
    const X = window.__dataUriExporter;
    if (!X || typeof MutationObserver !== 'function') return;
    const SELECTOR = '[src^="data:"], [href^="data:"], [style*="data:"]';

    const observer = new MutationObserver((mutations) => {
      for (const m of mutations) {
        try {
          if (m.type === 'attributes') {
            X.scanElement(m.target, 'mutation');
            continue;
          }
          for (const node of Array.from(m.addedNodes || [])) {
            if (!node || node.nodeType !== 1) continue;
            X.scanElement(node, 'mutation');
            if (node.querySelectorAll) {
              node.querySelectorAll(SELECTOR).forEach((el) => X.scanElement(el, 'mutation'));
            }
          }
        } catch (e) {
          console.error('[DataURI Exporter] Mutation processing error:', e);
        }
      }
    });

    observer.observe(document, {
      childList: true,
      subtree: true,
      attributes: true,
      attributeFilter: ['src', 'href', 'style']
    });
  } catch (e) {
    console.error('[DataURI Exporter] Observer creation error:', e);
  }
})();
"""

# Evaluated by DocumentScanner; self-contained so it works without the hooks.
DOCUMENT_SCAN_SCRIPT = r"""
() => {
  const results = [];
  const RX = /url\(\s*['"]?(data:[^'")\s]+)['"]?\s*\)/gi;

  function fromCss(text) {
    if (!text) return;
    for (const m of String(text).matchAll(RX)) results.push(m[1]);
  }

  document.querySelectorAll('[src^="data:"]').forEach((el) => {
    results.push(el.getAttribute('src').trim());
  });
  document.querySelectorAll('[href^="data:"]').forEach((el) => {
    results.push(el.getAttribute('href').trim());
  });
  document.querySelectorAll('[style*="data:"]').forEach((el) => {
    fromCss(el.getAttribute('style'));
  });

  function walkRules(rules) {
    for (const rule of Array.from(rules || [])) {
      try {
        if (rule.cssRules) walkRules(rule.cssRules);
        if (rule.style) fromCss(rule.style.cssText);
      } catch (e) {}
    }
  }

  for (const sheet of Array.from(document.styleSheets)) {
    try {
      walkRules(sheet.cssRules);
    } catch (e) {
      // cross-origin sheet
    }
  }

  return results;
}
"""


@dataclass(frozen=True)
class Hook:
    """One page-side interception point. Enabled when every flag in `flags` is true."""
    name: str
    channel: str
    flags: Tuple[str, ...]
    body: str

    def enabled(self, settings: Any) -> bool:
        return all(bool(getattr(settings, flag, False)) for flag in self.flags)

    def script(self, fingerprint_samples: int) -> str:
        prelude = _PRELUDE.replace("__FINGERPRINT_SAMPLES__", str(max(0, int(fingerprint_samples))))
        return prelude + self.body


_AUDIO = "intercept_audio_context"

HOOKS: List[Hook] = [
    Hook("fetch", "runtime", ("intercept_fetch",), _FETCH_HOOK),
    Hook("xhr", "runtime", ("intercept_xhr",), _XHR_HOOK),
    Hook("decode_audio_data", "runtime", (_AUDIO, "intercept_decode_audio_data"), _DECODE_AUDIO_DATA_HOOK),
    Hook("create_buffer", "runtime", (_AUDIO, "intercept_create_buffer"), _CREATE_BUFFER_HOOK),
    Hook("buffer_source", "runtime", (_AUDIO, "intercept_create_buffer_source"), _BUFFER_SOURCE_HOOK),
    Hook("script_processor", "runtime", (_AUDIO, "intercept_create_script_processor"), _SCRIPT_PROCESSOR_HOOK),
    Hook("offline_rendering", "runtime", (_AUDIO, "intercept_offline_audio_context"), _OFFLINE_RENDERING_HOOK),
    Hook("mutation_observer", "dom", ("use_mutation_observer",), _MUTATION_OBSERVER_HOOK),
]


def hooks_for(channel: str, settings: Any) -> List[Hook]:
    return [h for h in HOOKS if h.channel == channel and h.enabled(settings)]


async def install_hooks(
    context: Any,
    hooks: List[Hook],
    *,
    fingerprint_samples: int,
    log: Callable[[str], None],
) -> List[str]:
    """
    Add one init script per hook. A hook that fails to install is logged and
    skipped; the rest still go in. Returns the names that were installed.
    """
    installed: List[str] = []
    for hook in hooks:
        try:
            await context.add_init_script(script=hook.script(fingerprint_samples))
            installed.append(hook.name)
        except Exception as e:
            log(f"Failed to install {hook.name} hook: {e}")
    return installed
