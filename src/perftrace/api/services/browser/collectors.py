"""In-page observation scripts and the pull-based calls that read them.

The collector script is registered as a context init script, so it runs in
every document of every tab before page scripts, and is also evaluated on
the live document after navigation. A ``window.__perftrace`` guard makes
repeated installs no-ops.
"""

import logging
from typing import Optional

from playwright.async_api import BrowserContext, Page

from perftrace.api.services.capture import CollectorSnapshot

logger = logging.getLogger(__name__)

COLLECTOR_SCRIPT = r"""
(() => {
  if (window.__perftrace) return false;
  const state = {
    fps: [], frames: 0, lastFlush: performance.now(),
    longTasks: [], fcp: null, lcp: null, cls: 0,
    heap: [], dom: [], animations: [],
  };
  window.__perftrace = state;

  const tick = (now) => {
    state.frames += 1;
    if (now - state.lastFlush >= 1000) {
      state.fps.push({ timeSec: now / 1000, frames: state.frames });
      state.frames = 0;
      state.lastFlush = now;
    }
    requestAnimationFrame(tick);
  };
  requestAnimationFrame(tick);

  const observe = (type, onEntry) => {
    try {
      new PerformanceObserver((list) => list.getEntries().forEach(onEntry))
        .observe({ type, buffered: true });
    } catch (e) {}
  };
  observe('longtask', (e) => state.longTasks.push({ startMs: e.startTime, durationMs: e.duration }));
  observe('paint', (e) => { if (e.name === 'first-contentful-paint') state.fcp = e.startTime; });
  observe('largest-contentful-paint', (e) => { state.lcp = e.renderTime || e.loadTime || e.startTime; });
  observe('layout-shift', (e) => { if (!e.hadRecentInput) state.cls += e.value; });

  const sampleHeapAndDom = () => {
    const t = performance.now() / 1000;
    if (performance.memory && performance.memory.usedJSHeapSize) {
      state.heap.push({ timeSec: t, mb: performance.memory.usedJSHeapSize / 1048576 });
    }
    state.dom.push({ timeSec: t, nodes: document.getElementsByTagName('*').length });
  };
  sampleHeapAndDom();
  setInterval(sampleHeapAndDom, 1500);

  document.addEventListener('animationstart', (e) => {
    state.animations.push({ name: e.animationName, kind: 'CSSAnimation', timeSec: performance.now() / 1000 });
  }, true);
  document.addEventListener('transitionstart', (e) => {
    state.animations.push({
      name: e.propertyName, kind: 'CSSTransition',
      timeSec: performance.now() / 1000, property: e.propertyName,
    });
  }, true);
  return true;
})()
"""

SNAPSHOT_SCRIPT = r"""
() => {
  const s = window.__perftrace;
  if (!s) return null;
  return {
    fps: s.fps.slice(), longTasks: s.longTasks.slice(),
    fcp: s.fcp, lcp: s.lcp, cls: s.cls,
    heap: s.heap.slice(), dom: s.dom.slice(), animations: s.animations.slice(),
  };
}
"""

LIVE_FPS_SCRIPT = r"""
() => {
  const s = window.__perftrace;
  if (!s) return null;
  const last = s.fps[s.fps.length - 1];
  if (last) return last.frames;
  const elapsed = (performance.now() - s.lastFlush) / 1000;
  return elapsed > 0 ? s.frames / elapsed : null;
}
"""

HEAP_DOM_SCRIPT = r"""
() => {
  const s = window.__perftrace;
  if (!s) return null;
  const heap = s.heap[s.heap.length - 1];
  const dom = s.dom[s.dom.length - 1];
  return { mb: heap ? heap.mb : null, nodes: dom ? dom.nodes : null };
}
"""


async def register_collectors(context: BrowserContext) -> None:
    """Install the collector in every future document of the context."""
    await context.add_init_script(script=COLLECTOR_SCRIPT)


async def install_collectors(page: Page) -> bool:
    """Install the collector on the page's current document.

    Returns:
        True if a new collector was installed, False if one already existed
        or installation failed
    """
    try:
        installed = await page.evaluate(COLLECTOR_SCRIPT)
    except Exception as e:
        logger.warning(f"Collector install failed on {page.url}: {e}")
        return False
    return bool(installed)


async def read_snapshot(page: Page) -> Optional[CollectorSnapshot]:
    """Read the collector state of a page, or None if unavailable."""
    try:
        payload = await page.evaluate(SNAPSHOT_SCRIPT)
    except Exception as e:
        logger.warning(f"Collector snapshot failed on {page.url}: {e}")
        return None
    if not isinstance(payload, dict):
        return None
    return CollectorSnapshot.from_payload(payload)


async def read_live_fps(page: Page) -> Optional[float]:
    """Latest one-second frame count from the page."""
    try:
        value = await page.evaluate(LIVE_FPS_SCRIPT)
    except Exception as e:
        logger.debug(f"Live FPS read failed: {e}")
        return None
    return float(value) if isinstance(value, (int, float)) else None


async def read_heap_and_dom(page: Page) -> tuple[Optional[float], Optional[float]]:
    """Latest in-page heap (MB) and element count."""
    try:
        value = await page.evaluate(HEAP_DOM_SCRIPT)
    except Exception as e:
        logger.debug(f"Heap/DOM read failed: {e}")
        return None, None
    if not isinstance(value, dict):
        return None, None
    heap = value.get("mb")
    nodes = value.get("nodes")
    return (
        float(heap) if isinstance(heap, (int, float)) else None,
        float(nodes) if isinstance(nodes, (int, float)) else None,
    )
